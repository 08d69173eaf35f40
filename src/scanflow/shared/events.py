import logging
import threading
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Callable, Optional

WILDCARD = '*'

class DomainEvent:
    event_type = 'event'

    def to_payload(self) -> dict:
        payload = asdict(self)
        payload.pop('customer_id', None)
        for key, value in payload.items():
            if isinstance(value, datetime):
                payload[key] = value.isoformat()
        return payload

@dataclass
class JobFailed(DomainEvent):
    job_id: int
    job_type: str
    attempts: int
    max_attempts: int
    error: str
    permanent: bool
    next_retry_at: Optional[datetime] = None
    customer_id: Optional[str] = None
    event_type = 'job.failed'

@dataclass
class JobCancelled(DomainEvent):
    job_id: int
    customer_id: Optional[str] = None
    event_type = 'job.cancelled'

@dataclass
class JobCompleted(DomainEvent):
    job_id: int
    job_type: str
    customer_id: Optional[str] = None
    event_type = 'job.completed'

@dataclass
class DocumentImported(DomainEvent):
    document_id: int
    batch_id: Optional[int]
    file_name: str
    customer_id: Optional[str] = None
    event_type = 'document.imported'

@dataclass
class DocumentExtracted(DomainEvent):
    document_id: int
    batch_id: Optional[int]
    confidence_score: Optional[float]
    needs_review: bool
    customer_id: Optional[str] = None
    event_type = 'document.extracted'

@dataclass
class DocumentValidated(DomainEvent):
    document_id: int
    batch_id: Optional[int]
    validated_by: Optional[str]
    customer_id: Optional[str] = None
    event_type = 'document.validated'

@dataclass
class DocumentRejected(DomainEvent):
    document_id: int
    batch_id: Optional[int]
    validated_by: Optional[str]
    customer_id: Optional[str] = None
    event_type = 'document.validation_failed'

@dataclass
class DuplicateDetected(DomainEvent):
    detection_id: int
    document_id: int
    candidate_document_id: int
    batch_id: Optional[int]
    similarity_score: float
    duplicate_type: str
    customer_id: Optional[str] = None
    event_type = 'document.duplicate_detected'

@dataclass
class BatchTransitioned(DomainEvent):
    batch_id: int
    batch_name: str
    from_status: str
    to_status: str
    customer_id: Optional[str] = None

    @property
    def event_type(self):
        if self.to_status == 'complete':
            return 'batch.completed'
        if self.to_status == 'error':
            return 'batch.failed'
        return 'batch.status_changed'

@dataclass
class ExportCompleted(DomainEvent):
    batch_id: int
    destination_type: str
    file_name: str
    customer_id: Optional[str] = None
    event_type = 'export.completed'

@dataclass
class ExportFailed(DomainEvent):
    batch_id: int
    destination_type: str
    error: str
    customer_id: Optional[str] = None
    event_type = 'export.failed'


class EventBus:
    """
    In-process publish/subscribe for domain events.

    Handlers subscribe to an event class or to ``'*'``. A failing handler is
    logged and never affects the publisher or the other handlers. When an
    executor is supplied handlers run on it instead of the publishing thread.
    """

    def __init__(self, executor=None):
        self.executor = executor
        self._handlers = {}
        self._lock = threading.Lock()

    def subscribe(self, event_class, handler: Callable):
        with self._lock:
            self._handlers.setdefault(event_class, []).append(handler)

    def unsubscribe(self, event_class, handler: Callable):
        with self._lock:
            handlers = self._handlers.get(event_class, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: DomainEvent):
        with self._lock:
            handlers = list(self._handlers.get(type(event), [])) + list(self._handlers.get(WILDCARD, []))

        for handler in handlers:
            if self.executor:
                self.executor.submit(self._run_handler, handler, event)
            else:
                self._run_handler(handler, event)

    def _run_handler(self, handler, event):
        try:
            handler(event)
        except Exception as e:
            logging.error('Event handler %s failed for %s: %s', getattr(handler, '__name__', handler), event.event_type, e)
