import logging
from dataclasses import dataclass, field
import scanflow.services.database.batch_service as batch_service
import scanflow.services.database.document_service as document_service
from scanflow.services.database.database import get_db, safe_db_operation
from scanflow.shared.batch_status import BatchStatus
from scanflow.shared.validation_status import ValidationStatus
from scanflow.shared.events import BatchTransitioned, ExportCompleted, ExportFailed
from scanflow.shared.errors import InvalidTransitionError, NotFoundError
from scanflow.shared.job_type import JobType
from scanflow.shared.utils import utcnow

ALLOWED_TRANSITIONS = {
    BatchStatus.NEW: {BatchStatus.SCANNING},
    BatchStatus.SCANNING: {BatchStatus.INDEXING},
    BatchStatus.INDEXING: {BatchStatus.VALIDATION},
    BatchStatus.VALIDATION: {BatchStatus.VALIDATED, BatchStatus.SUSPENDED, BatchStatus.EXPORTED},
    BatchStatus.SUSPENDED: {BatchStatus.VALIDATION},
    BatchStatus.VALIDATED: {BatchStatus.COMPLETE, BatchStatus.EXPORTED},
    BatchStatus.COMPLETE: {BatchStatus.EXPORTED},
    BatchStatus.EXPORTED: set(),
    BatchStatus.ERROR: {BatchStatus.SCANNING},
}

TIMESTAMP_ON_ENTRY = {
    BatchStatus.SCANNING: 'started_at',
    BatchStatus.COMPLETE: 'completed_at',
    BatchStatus.EXPORTED: 'exported_at',
}

def can_transition(from_status: BatchStatus, to_status: BatchStatus) -> bool:
    if to_status == BatchStatus.ERROR:
        return from_status != BatchStatus.ERROR
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())

@dataclass
class TransitionResult:
    batch_id: int
    from_status: BatchStatus
    to_status: BatchStatus
    warnings: list = field(default_factory=list)
    exports: list = field(default_factory=list)

    def serialize(self):
        return {
            'batch_id': self.batch_id,
            'from_status': self.from_status.value,
            'to_status': self.to_status.value,
            'warnings': self.warnings,
            'exports': self.exports,
        }


class BatchStateMachine:
    """
    Drives Batch.status along ALLOWED_TRANSITIONS and runs the side effects
    attached to a transition. Export failures are reported as warnings and
    never roll the status back.
    """

    def __init__(self, session_factory=None, event_bus=None, exporter=None, job_queue=None, indexer=None):
        self.session_factory = session_factory
        self.event_bus = event_bus
        self.exporter = exporter
        self.job_queue = job_queue
        # called with a batch id while the batch is indexing (duplicate scan)
        self.indexer = indexer

    def transition(self, batch_id, target: BatchStatus, reason=None) -> TransitionResult:
        batch = self._get_batch(batch_id)
        current = batch.status
        if not can_transition(current, target):
            raise InvalidTransitionError(current, target)

        timestamps = {}
        if target in TIMESTAMP_ON_ENTRY:
            timestamps[TIMESTAMP_ON_ENTRY[target]] = utcnow()
        if target == BatchStatus.EXPORTED:
            timestamps['export_started_at'] = utcnow()

        updated = safe_db_operation(batch_service.update_batch_status, batch_id, current, target, timestamps, session_factory=self.session_factory)
        if not updated:
            # someone else moved the batch first
            latest = self._get_batch(batch_id)
            raise InvalidTransitionError(latest.status, target)

        if reason:
            safe_db_operation(batch_service.update_batch_metadata, batch_id, last_transition_reason=reason, session_factory=self.session_factory)
        logging.info(f"Batch {batch_id} moved from {current.value} to {target.value}")

        result = TransitionResult(batch_id=batch_id, from_status=current, to_status=target)
        self._publish(BatchTransitioned(
            batch_id=batch_id,
            batch_name=batch.batch_name,
            from_status=current.value,
            to_status=target.value,
            customer_id=batch.customer_id,
        ))

        if target == BatchStatus.EXPORTED:
            self._run_exports(batch, result)
        return result

    def suspend(self, batch_id, reason=None):
        return self.transition(batch_id, BatchStatus.SUSPENDED, reason)

    def resume(self, batch_id):
        return self.transition(batch_id, BatchStatus.VALIDATION)

    def mark_error(self, batch_id, error):
        safe_db_operation(batch_service.update_batch_metadata, batch_id, error=str(error), session_factory=self.session_factory)
        return self.transition(batch_id, BatchStatus.ERROR, str(error))

    def refresh(self, batch_id):
        """Recompute counters from documents and take any automatic step they allow."""
        batch = safe_db_operation(batch_service.refresh_batch_counts, batch_id, session_factory=self.session_factory)
        if not batch:
            raise NotFoundError(f"Batch {batch_id} not found")

        # new batches are still being imported; the scanner moves them to scanning
        all_extracted = batch.total_documents > 0 and batch.processed_documents == batch.total_documents
        if batch.status == BatchStatus.SCANNING and all_extracted:
            self.transition(batch_id, BatchStatus.INDEXING)
            batch.status = BatchStatus.INDEXING
        if batch.status == BatchStatus.INDEXING:
            if self.indexer:
                self.indexer(batch_id)
            self.transition(batch_id, BatchStatus.VALIDATION)
            batch.status = BatchStatus.VALIDATION
        if batch.status == BatchStatus.VALIDATION and self._validation_finished(batch_id, batch):
            self.transition(batch_id, BatchStatus.VALIDATED)
            batch.status = BatchStatus.VALIDATED
        return batch

    def reprocess(self, batch_id):
        """Re-enqueue extraction for documents that never got extracted and restart scanning."""
        batch = self._get_batch(batch_id)
        documents = safe_db_operation(batch_service.get_unextracted_documents, batch_id, session_factory=self.session_factory)
        if batch.status != BatchStatus.SCANNING:
            if batch.status == BatchStatus.NEW:
                self.transition(batch_id, BatchStatus.SCANNING)
            elif can_transition(batch.status, BatchStatus.SCANNING):
                self.transition(batch_id, BatchStatus.SCANNING, 'reprocess')
            else:
                raise InvalidTransitionError(batch.status, BatchStatus.SCANNING)

        job_ids = []
        for document in documents:
            job = self.job_queue.enqueue(JobType.EXTRACT_DOCUMENT.value, {'document_id': document.id}, customer_id=batch.customer_id)
            job_ids.append(job.id)
        logging.info(f"Re-queued extraction for {len(job_ids)} documents in batch {batch_id}")
        return job_ids

    def delete_batch(self, batch_id):
        result = safe_db_operation(batch_service.delete_batch_cascade, batch_id, session_factory=self.session_factory)
        if result is None:
            raise NotFoundError(f"Batch {batch_id} not found")
        logging.info(f"Deleted batch {batch_id} with {result['documents_deleted']} documents")
        return result

    def _validation_finished(self, batch_id, batch):
        if batch.total_documents == 0:
            return False
        with get_db(self.session_factory) as db:
            by_status = batch_service.count_documents_by_status(db, batch_id)
        open_documents = by_status.get(ValidationStatus.PENDING, 0) + by_status.get(ValidationStatus.NEEDS_REVIEW, 0)
        return open_documents == 0

    def _run_exports(self, batch, result):
        with get_db(self.session_factory) as db:
            project = batch_service.get_project(db, batch.project_id)
            documents = document_service.get_documents_for_batch(db, batch.id, ValidationStatus.VALIDATED)
        formats = project.enabled_export_formats() if project else {}

        if not formats:
            result.warnings.append('No export formats are enabled for this project')
        elif not self.exporter:
            result.warnings.append('No exporter is configured')
        else:
            succeeded, failed = self.exporter.export(batch, documents, formats)
            result.exports = succeeded
            for failure in failed:
                result.warnings.append(f"{failure['type']} export failed: {failure['error']}")
                self._publish(ExportFailed(batch_id=batch.id, destination_type=failure['type'], error=failure['error'], customer_id=batch.customer_id))
            for export in succeeded:
                self._publish(ExportCompleted(batch_id=batch.id, destination_type=export['type'], file_name=export['fileName'], customer_id=batch.customer_id))

        existing = list((batch.batch_metadata or {}).get('exports', []))
        safe_db_operation(batch_service.update_batch_metadata, batch.id, exports=existing + result.exports, session_factory=self.session_factory)
        safe_db_operation(batch_service.set_batch_export_times, batch.id, None, utcnow(), session_factory=self.session_factory)
        for warning in result.warnings:
            logging.warning(f"Batch {batch.id} export: {warning}")

    def _get_batch(self, batch_id):
        batch = safe_db_operation(batch_service.get_batch, batch_id, session_factory=self.session_factory)
        if not batch:
            raise NotFoundError(f"Batch {batch_id} not found")
        return batch

    def _publish(self, event):
        if self.event_bus:
            self.event_bus.publish(event)
