import unittest
from unittest.mock import MagicMock
import scanflow.services.database.batch_service as batch_service
import scanflow.services.database.document_service as document_service
from scanflow.batches.document_validator import DocumentValidator
from scanflow.scripts.create_database import create_tables
from scanflow.services.database.database import create_session_factory, get_db
from scanflow.shared.errors import InvalidInputError, NotFoundError
from scanflow.shared.events import EventBus, DocumentValidated, DocumentRejected
from scanflow.shared.validation_status import ValidationStatus

class TestDocumentValidator(unittest.TestCase):
    def setUp(self):
        self.session_factory = create_session_factory('sqlite://')
        create_tables(self.session_factory.kw['bind'])
        self.bus = EventBus()
        self.events = []
        self.bus.subscribe('*', self.events.append)
        self.state_machine = MagicMock()
        self.validator = DocumentValidator(self.session_factory, self.bus, self.state_machine)

        with get_db(self.session_factory) as db:
            self.batch_id = batch_service.create_batch(db, 'Batch A', 'acme').id
            self.document_id = document_service.create_document(db, 'a.pdf', batch_id=self.batch_id).id

    def test_validate(self):
        document = self.validator.validate(self.document_id, 'validated', 'jo')

        self.assertEqual(document.validation_status, ValidationStatus.VALIDATED)
        self.assertEqual(document.validated_by, 'jo')
        self.assertIsInstance(self.events[0], DocumentValidated)
        self.assertEqual(self.events[0].customer_id, 'acme')
        self.state_machine.refresh.assert_called_once_with(self.batch_id)

    def test_reject(self):
        self.validator.validate(self.document_id, 'rejected', 'jo')

        self.assertIsInstance(self.events[0], DocumentRejected)
        self.assertEqual(self.events[0].event_type, 'document.validation_failed')

    def test_bad_outcome_and_missing_document(self):
        with self.assertRaises(InvalidInputError):
            self.validator.validate(self.document_id, 'maybe', 'jo')
        with self.assertRaises(NotFoundError):
            self.validator.validate(999, 'validated', 'jo')
        self.assertEqual(self.events, [])
