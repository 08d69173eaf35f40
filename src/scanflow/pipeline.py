import requests
from functools import cached_property
import scanflow.scanner.config as scanner_config
import scanflow.services.database.batch_service as batch_service
import scanflow.worker.config as config
from scanflow.batches.document_validator import DocumentValidator
from scanflow.batches.state_machine import BatchStateMachine
from scanflow.duplicates.duplicate_detector import DuplicateDetector
from scanflow.jobs.job_queue import JobQueue
from scanflow.jobs.retry_scheduler import RetryScheduler
from scanflow.scanner.import_scanner import ImportScanner
from scanflow.services.database.database import safe_db_operation
from scanflow.services.export.exporters import BatchExporter
from scanflow.services.extraction.extraction_client import ExtractionClient
from scanflow.services.minio.minio_service import create_minio_client, MinioSourceLocation, MinioObjectStore
from scanflow.shared.events import EventBus, JobFailed, JobCancelled, WILDCARD
from scanflow.webhooks.webhook_dispatcher import WebhookDispatcher

class Pipeline:
    """
    Builds and wires the scanflow components for one process.

    Storage-backed components are created on first use so processes that
    never touch MinIO (or tests) don't need it configured.
    """

    def __init__(self, session_factory=None, publisher=None, minio_client=None, extraction_client=None, http_post=requests.post, executor=None):
        self.session_factory = session_factory
        self.publisher = publisher
        self.executor = executor
        self._minio_client = minio_client
        self._extraction_client = extraction_client

        self.event_bus = EventBus(executor=executor)
        self.job_queue = JobQueue(session_factory, self.event_bus, publisher)
        self.retry_scheduler = RetryScheduler(on_due=self.job_queue.announce, load_pending=self.job_queue.list_pending_retries)
        self.dispatcher = WebhookDispatcher(session_factory, self.job_queue, http_post=http_post)
        self.detector = DuplicateDetector(session_factory, self.event_bus)

        self.event_bus.subscribe(JobFailed, self.retry_scheduler.handle_job_failed)
        self.event_bus.subscribe(JobCancelled, self.retry_scheduler.handle_job_cancelled)
        self.event_bus.subscribe(WILDCARD, self.dispatcher.handle_event)

    def start(self):
        return self.retry_scheduler.start()

    def shutdown(self):
        self.retry_scheduler.shutdown()
        if self.executor:
            self.executor.shutdown(wait=True)

    @cached_property
    def minio_client(self):
        return self._minio_client or create_minio_client()

    @cached_property
    def document_store(self):
        return MinioObjectStore(self.minio_client, config.MINIO_DOCUMENT_BUCKET)

    @cached_property
    def export_store(self):
        return MinioObjectStore(self.minio_client, config.MINIO_EXPORT_BUCKET)

    @cached_property
    def source(self):
        return MinioSourceLocation(self.minio_client, scanner_config.MINIO_SOURCE_BUCKET)

    @cached_property
    def extraction_client(self):
        return self._extraction_client or ExtractionClient()

    @cached_property
    def state_machine(self):
        return BatchStateMachine(
            self.session_factory,
            self.event_bus,
            exporter=BatchExporter(self.export_store),
            job_queue=self.job_queue,
            indexer=self.index_batch,
        )

    @cached_property
    def validator(self):
        return DocumentValidator(self.session_factory, self.event_bus, self.state_machine)

    @cached_property
    def scanner(self):
        return ImportScanner(
            self.source,
            self.document_store,
            self.job_queue,
            session_factory=self.session_factory,
            event_bus=self.event_bus,
            state_machine=self.state_machine,
        )

    def index_batch(self, batch_id):
        batch = safe_db_operation(batch_service.get_batch, batch_id, session_factory=self.session_factory)
        project = safe_db_operation(batch_service.get_project, batch.project_id, session_factory=self.session_factory) if batch else None
        cross_batch = bool(project and project.check_cross_batch)
        return self.detector.scan_all(batch_id, cross_batch=cross_batch)
