import logging
import scanflow.services.database.document_service as document_service
import scanflow.services.database.duplicate_service as duplicate_service
import scanflow.services.database.batch_service as batch_service
from scanflow.duplicates.similarity import comparator_for, field_value
from scanflow.models.project import DEFAULT_DUPLICATE_THRESHOLDS
from scanflow.services.database.database import get_db, safe_db_operation
from scanflow.shared.duplicate_status import DuplicateStatus
from scanflow.shared.events import DuplicateDetected
from scanflow.shared.errors import InvalidTransitionError, NotFoundError

REVIEW_DECISIONS = {
    'confirmed': DuplicateStatus.CONFIRMED,
    'dismissed': DuplicateStatus.DISMISSED,
}

class DuplicateDetector:
    def __init__(self, session_factory=None, event_bus=None, comparators=None):
        self.session_factory = session_factory
        self.event_bus = event_bus
        self.comparators = comparators

    def detect(self, document_id, batch_id=None, cross_batch=False, thresholds=None):
        """
        Compare one document against its candidates and record every pair that
        crosses a field threshold. Returns the best detection for the document
        (new or already recorded), or None.
        """
        with get_db(self.session_factory) as db:
            document = document_service.get_document(db, document_id)
            if not document:
                raise NotFoundError(f"Document {document_id} not found")
            batch_id = batch_id or document.batch_id
            batch = batch_service.get_batch(db, batch_id) if batch_id else None
            project = batch_service.get_project(db, batch.project_id) if batch else None

            thresholds = thresholds or (project.duplicate_thresholds if project else None) or DEFAULT_DUPLICATE_THRESHOLDS
            if cross_batch and project:
                batch_ids = duplicate_service.get_project_batch_ids(db, project.id)
            else:
                batch_ids = [batch_id] if batch_id else []
            candidates = document_service.get_duplicate_candidates(db, document, batch_ids) if batch_ids else []

        best = None
        for candidate in candidates:
            comparison = self.compare(document, candidate, thresholds)
            if not comparison['flagged_fields']:
                continue

            with get_db(self.session_factory) as db:
                detection, created = duplicate_service.record_detection(
                    db,
                    document_id=document.id,
                    candidate_document_id=candidate.id,
                    batch_id=batch_id,
                    similarity_score=comparison['similarity_score'],
                    duplicate_type=comparison['duplicate_type'],
                    field_comparison=comparison['fields'],
                )

            if created:
                logging.info(f"Document {document.id} flagged as possible duplicate of {candidate.id} ({detection.similarity_score:.2f})")
                if self.event_bus:
                    self.event_bus.publish(DuplicateDetected(
                        detection_id=detection.id,
                        document_id=document.id,
                        candidate_document_id=candidate.id,
                        batch_id=batch_id,
                        similarity_score=detection.similarity_score,
                        duplicate_type=detection.duplicate_type,
                        customer_id=batch.customer_id if batch else None,
                    ))
            if best is None or detection.similarity_score > best.similarity_score:
                best = detection
        return best

    def compare(self, document, candidate, thresholds):
        fields = {}
        flagged = []
        for field_name, threshold in thresholds.items():
            current_value = field_value(document, field_name)
            candidate_value = field_value(candidate, field_name)
            similarity = comparator_for(field_name, self.comparators)(current_value, candidate_value)
            similarity = min(1.0, max(0.0, float(similarity)))
            fields[field_name] = {
                'current': current_value,
                'candidate': candidate_value,
                'similarity': round(similarity, 4),
            }
            if similarity >= threshold:
                flagged.append(field_name)

        score = sum(f['similarity'] for f in fields.values()) / len(fields) if fields else 0.0
        if len(flagged) > 1:
            duplicate_type = 'combined'
        else:
            duplicate_type = flagged[0] if flagged else None
        return {
            'fields': fields,
            'flagged_fields': flagged,
            'similarity_score': round(score, 4),
            'duplicate_type': duplicate_type,
        }

    def scan_all(self, batch_id=None, cross_batch=False, thresholds=None):
        document_ids = safe_db_operation(document_service.get_batched_document_ids, batch_id, session_factory=self.session_factory)
        results = {'processed': 0, 'failed': 0, 'detections': 0}
        for document_id in document_ids:
            try:
                if self.detect(document_id, None, cross_batch, thresholds):
                    results['detections'] += 1
                results['processed'] += 1
            except Exception as e:
                logging.error('Duplicate detection failed for document %s: %s', document_id, e)
                results['failed'] += 1
        logging.info(f"Duplicate scan finished: {results}")
        return results

    def review(self, detection_id, decision, reviewer):
        status = REVIEW_DECISIONS.get(decision)
        if not status:
            raise ValueError(f"Unknown review decision: {decision}")

        detection = safe_db_operation(duplicate_service.get_detection, detection_id, session_factory=self.session_factory)
        if not detection:
            raise NotFoundError(f"Duplicate detection {detection_id} not found")
        if detection.status != DuplicateStatus.PENDING:
            raise InvalidTransitionError(detection.status, status)
        return safe_db_operation(duplicate_service.review_detection, detection_id, status, reviewer, session_factory=self.session_factory)
