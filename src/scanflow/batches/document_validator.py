import logging
import scanflow.services.database.batch_service as batch_service
import scanflow.services.database.document_service as document_service
from scanflow.services.database.database import safe_db_operation
from scanflow.shared.errors import InvalidInputError, NotFoundError
from scanflow.shared.events import DocumentValidated, DocumentRejected
from scanflow.shared.validation_status import ValidationStatus

REVIEW_OUTCOMES = {
    'validated': ValidationStatus.VALIDATED,
    'rejected': ValidationStatus.REJECTED,
}

class DocumentValidator:
    def __init__(self, session_factory=None, event_bus=None, state_machine=None):
        self.session_factory = session_factory
        self.event_bus = event_bus
        self.state_machine = state_machine

    def validate(self, document_id, outcome, validated_by=None):
        status = REVIEW_OUTCOMES.get(outcome)
        if not status:
            raise InvalidInputError(f"Validation outcome must be one of {sorted(REVIEW_OUTCOMES)}")

        document = safe_db_operation(document_service.update_validation_status, document_id, status, validated_by, session_factory=self.session_factory)
        if not document:
            raise NotFoundError(f"Document {document_id} not found")
        logging.info(f"Document {document_id} marked {status.value} by {validated_by}")

        batch = safe_db_operation(batch_service.get_batch, document.batch_id, session_factory=self.session_factory) if document.batch_id else None
        if self.event_bus:
            event_class = DocumentValidated if status == ValidationStatus.VALIDATED else DocumentRejected
            self.event_bus.publish(event_class(
                document_id=document.id,
                batch_id=document.batch_id,
                validated_by=validated_by,
                customer_id=batch.customer_id if batch else None,
            ))
        if batch and self.state_machine:
            self.state_machine.refresh(batch.id)
        return document
