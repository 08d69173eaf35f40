import unittest
from unittest.mock import MagicMock
import scanflow.services.database.batch_service as batch_service
import scanflow.services.database.document_service as document_service
import scanflow.services.database.import_service as import_service
from scanflow.batches.state_machine import BatchStateMachine, can_transition
from scanflow.models.duplicate_detection import DuplicateDetection
from scanflow.models.import_config import ImportConfig
from scanflow.models.project import Project
from scanflow.scripts.create_database import create_tables
from scanflow.services.database.database import create_session_factory, get_db
from scanflow.services.export.exporters import BatchExporter
from scanflow.shared.batch_status import BatchStatus
from scanflow.shared.errors import InvalidTransitionError, NotFoundError
from scanflow.shared.events import EventBus, BatchTransitioned, ExportFailed, ExportCompleted, WILDCARD
from scanflow.shared.import_status import ImportStatus
from scanflow.shared.validation_status import ValidationStatus
from scanflow.shared.utils import utcnow

class TestStateMachine(unittest.TestCase):
    def setUp(self):
        self.session_factory = create_session_factory('sqlite://')
        create_tables(self.session_factory.kw['bind'])
        self.bus = EventBus()
        self.events = []
        self.bus.subscribe(WILDCARD, self.events.append)
        self.object_store = MagicMock()
        self.job_queue = MagicMock()
        self.indexer = MagicMock()
        self.state_machine = BatchStateMachine(
            self.session_factory, self.bus,
            exporter=BatchExporter(self.object_store),
            job_queue=self.job_queue,
            indexer=self.indexer,
        )

        with get_db(self.session_factory) as db:
            project = Project(customer_id='acme', name='Petitions', export_config={
                'csv': {'enabled': True, 'destination': 'acme/csv'},
                'xml': {'enabled': True, 'destination': 'acme/xml'},
                'txt': {'enabled': False},
            })
            db.add(project)
            db.commit()
            self.project_id = project.id
        self.batch = self._create_batch()

    def _create_batch(self, status=BatchStatus.NEW):
        with get_db(self.session_factory) as db:
            batch = batch_service.create_batch(db, 'Import_2024-01-01', 'acme', self.project_id)
            batch.status = status
            db.commit()
            return batch

    def _add_document(self, batch_id, status=ValidationStatus.PENDING, extracted=True, name='JANE DOE'):
        with get_db(self.session_factory) as db:
            document = document_service.create_document(db, f"{name}.pdf", batch_id=batch_id, project_id=self.project_id)
            document.validation_status = status
            document.extracted_fields = {'name': {'value': name, 'confidence': 0.95, 'needs_review': False, 'is_handwritten': False}}
            if extracted:
                document.extracted_at = utcnow()
            db.commit()
            return document

    def _status(self, batch_id):
        with get_db(self.session_factory) as db:
            return batch_service.get_batch(db, batch_id).status

    def test_transition_table(self):
        self.assertTrue(can_transition(BatchStatus.NEW, BatchStatus.SCANNING))
        self.assertTrue(can_transition(BatchStatus.VALIDATION, BatchStatus.SUSPENDED))
        self.assertTrue(can_transition(BatchStatus.SUSPENDED, BatchStatus.VALIDATION))
        self.assertTrue(can_transition(BatchStatus.COMPLETE, BatchStatus.ERROR))
        self.assertFalse(can_transition(BatchStatus.NEW, BatchStatus.VALIDATED))
        self.assertFalse(can_transition(BatchStatus.EXPORTED, BatchStatus.VALIDATION))
        self.assertFalse(can_transition(BatchStatus.ERROR, BatchStatus.ERROR))

    def test_transition_publishes_and_stamps(self):
        result = self.state_machine.transition(self.batch.id, BatchStatus.SCANNING)

        self.assertEqual(result.from_status, BatchStatus.NEW)
        self.assertEqual(self._status(self.batch.id), BatchStatus.SCANNING)
        with get_db(self.session_factory) as db:
            self.assertIsNotNone(batch_service.get_batch(db, self.batch.id).started_at)
        self.assertIsInstance(self.events[0], BatchTransitioned)
        self.assertEqual(self.events[0].event_type, 'batch.status_changed')

    def test_invalid_transition_raises(self):
        with self.assertRaises(InvalidTransitionError):
            self.state_machine.transition(self.batch.id, BatchStatus.COMPLETE)
        self.assertEqual(self._status(self.batch.id), BatchStatus.NEW)

    def test_unknown_batch(self):
        with self.assertRaises(NotFoundError):
            self.state_machine.transition(999, BatchStatus.SCANNING)

    def test_export_records_only_successful_destinations(self):
        batch = self._create_batch(BatchStatus.VALIDATION)
        self._add_document(batch.id, ValidationStatus.VALIDATED)

        def upload(key, data, content_type):
            if key.startswith('acme/xml'):
                raise ConnectionError("export bucket unavailable")
            return key
        self.object_store.upload.side_effect = upload

        result = self.state_machine.transition(batch.id, BatchStatus.EXPORTED)

        self.assertEqual(self._status(batch.id), BatchStatus.EXPORTED)
        self.assertEqual([export['type'] for export in result.exports], ['csv'])
        self.assertEqual(len(result.warnings), 1)
        self.assertIn('xml', result.warnings[0])
        with get_db(self.session_factory) as db:
            stored = batch_service.get_batch(db, batch.id)
            self.assertEqual([export['type'] for export in stored.batch_metadata['exports']], ['csv'])
            self.assertEqual(stored.batch_metadata['exports'][0]['destination'], 'acme/csv')
            self.assertIsNotNone(stored.exported_at)
        self.assertTrue(any(isinstance(event, ExportFailed) for event in self.events))
        self.assertTrue(any(isinstance(event, ExportCompleted) for event in self.events))

    def test_suspend_and_resume(self):
        batch = self._create_batch(BatchStatus.VALIDATION)

        self.state_machine.suspend(batch.id, 'waiting on customer')
        self.assertEqual(self._status(batch.id), BatchStatus.SUSPENDED)

        self.state_machine.resume(batch.id)
        self.assertEqual(self._status(batch.id), BatchStatus.VALIDATION)

    def test_mark_error_from_any_state(self):
        batch = self._create_batch(BatchStatus.INDEXING)

        self.state_machine.mark_error(batch.id, 'extraction service down')

        self.assertEqual(self._status(batch.id), BatchStatus.ERROR)
        self.assertEqual(self.events[-1].event_type, 'batch.failed')
        with get_db(self.session_factory) as db:
            self.assertEqual(batch_service.get_batch(db, batch.id).batch_metadata['error'], 'extraction service down')

    def test_refresh_advances_through_indexing_to_validation(self):
        batch = self._create_batch(BatchStatus.SCANNING)
        self._add_document(batch.id)
        self._add_document(batch.id, name='JOHN SMITH')

        refreshed = self.state_machine.refresh(batch.id)

        self.assertEqual(refreshed.total_documents, 2)
        self.assertEqual(refreshed.processed_documents, 2)
        self.assertEqual(self._status(batch.id), BatchStatus.VALIDATION)
        self.indexer.assert_called_once_with(batch.id)

    def test_refresh_leaves_new_batch_to_the_importer(self):
        self._add_document(self.batch.id)

        refreshed = self.state_machine.refresh(self.batch.id)

        self.assertEqual(refreshed.processed_documents, 1)
        self.assertEqual(self._status(self.batch.id), BatchStatus.NEW)
        self.indexer.assert_not_called()

    def test_refresh_waits_for_unextracted_documents(self):
        batch = self._create_batch(BatchStatus.SCANNING)
        self._add_document(batch.id)
        self._add_document(batch.id, extracted=False)

        self.state_machine.refresh(batch.id)

        self.assertEqual(self._status(batch.id), BatchStatus.SCANNING)

    def test_refresh_marks_batch_validated_when_review_done(self):
        batch = self._create_batch(BatchStatus.VALIDATION)
        self._add_document(batch.id, ValidationStatus.VALIDATED)
        self._add_document(batch.id, ValidationStatus.REJECTED)

        refreshed = self.state_machine.refresh(batch.id)

        self.assertEqual(self._status(batch.id), BatchStatus.VALIDATED)
        self.assertEqual(refreshed.validated_documents, 1)
        self.assertEqual(refreshed.error_count, 1)
        self.assertLessEqual(refreshed.validated_documents + refreshed.error_count, refreshed.total_documents)

    def test_reprocess_requeues_unextracted_documents(self):
        batch = self._create_batch(BatchStatus.ERROR)
        self._add_document(batch.id)
        pending = self._add_document(batch.id, extracted=False)
        self.job_queue.enqueue.return_value = MagicMock(id=42)

        job_ids = self.state_machine.reprocess(batch.id)

        self.assertEqual(job_ids, [42])
        self.job_queue.enqueue.assert_called_once_with('extract_document', {'document_id': pending.id}, customer_id='acme')
        self.assertEqual(self._status(batch.id), BatchStatus.SCANNING)

    def test_delete_batch_cascades_in_one_transaction(self):
        batch = self._create_batch(BatchStatus.VALIDATION)
        first = self._add_document(batch.id)
        second = self._add_document(batch.id, name='JANE DOE')
        other_batch = self._create_batch()
        survivor = self._add_document(other_batch.id)
        with get_db(self.session_factory) as db:
            config = ImportConfig(customer_id='acme', watch_folder='inbox', target_batch_id=batch.id)
            db.add(config)
            db.commit()
            import_service.create_import_log(db, config.id, 'a.pdf', 'inbox/a.pdf', ImportStatus.SUCCESS, document_id=first.id, batch_id=batch.id)
            db.add(DuplicateDetection(document_id=first.id, candidate_document_id=second.id, batch_id=batch.id, similarity_score=0.9))
            db.commit()
            config_id = config.id

        result = self.state_machine.delete_batch(batch.id)

        self.assertEqual(result['documents_deleted'], 2)
        with get_db(self.session_factory) as db:
            self.assertIsNone(batch_service.get_batch(db, batch.id))
            self.assertIsNone(document_service.get_document(db, first.id))
            self.assertIsNotNone(document_service.get_document(db, survivor.id))
            self.assertEqual(db.query(DuplicateDetection).count(), 0)
            self.assertTrue(import_service.is_import_settled(db, config_id, 'inbox/a.pdf'))
            self.assertIsNone(import_service.get_import_logs(db, config_id)[0].batch_id)

    def test_delete_batch_rolls_back_on_error(self):
        batch = self._create_batch(BatchStatus.VALIDATION)
        document = self._add_document(batch.id)

        with get_db(self.session_factory) as db:
            original_commit = db.commit
            db.commit = MagicMock(side_effect=RuntimeError("connection lost"))
            with self.assertRaises(RuntimeError):
                batch_service.delete_batch_cascade(db, batch.id)
            db.commit = original_commit

        with get_db(self.session_factory) as db:
            self.assertIsNotNone(batch_service.get_batch(db, batch.id))
            self.assertIsNotNone(document_service.get_document(db, document.id))

    def test_delete_unknown_batch(self):
        with self.assertRaises(NotFoundError):
            self.state_machine.delete_batch(999)
