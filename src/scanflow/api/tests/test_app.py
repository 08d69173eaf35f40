import unittest
from datetime import timedelta
from unittest.mock import MagicMock, patch
import scanflow.services.database.api_key_service as api_key_service
import scanflow.services.database.batch_service as batch_service
import scanflow.services.database.document_service as document_service
from scanflow.api.app import app, auth
from scanflow.batches.state_machine import TransitionResult
from scanflow.pipeline import Pipeline
from scanflow.scripts.create_database import create_tables
from scanflow.services.database.database import create_session_factory, get_db
from scanflow.shared.batch_status import BatchStatus
from scanflow.shared.errors import InvalidTransitionError, NotFoundError
from scanflow.shared.utils import utcnow
from scanflow.shared.validation_status import ValidationStatus
from scanflow.webhooks.diagnostics import Diagnosis
from scanflow.webhooks.webhook_dispatcher import DeliveryResult

class TestReadApi(unittest.TestCase):
    def setUp(self):
        self.app = app.test_client()
        self.session_factory = create_session_factory('sqlite://')
        create_tables(self.session_factory.kw['bind'])
        self.pipeline = Pipeline(session_factory=self.session_factory, publisher=MagicMock())
        patcher = patch('scanflow.api.app.pipeline', self.pipeline)
        patcher.start()
        self.addCleanup(patcher.stop)

        with get_db(self.session_factory) as db:
            self.api_key, self.raw_key = api_key_service.create_api_key(db, 'acme', 'integration')
            _, self.expired_key = api_key_service.create_api_key(db, 'acme', 'old', expires_at=utcnow() - timedelta(days=1))
            self.batch_id = batch_service.create_batch(db, 'Import_2024-01-01', 'acme').id
            self.other_batch_id = batch_service.create_batch(db, 'Theirs', 'globex').id

            validated = document_service.create_document(db, 'a.pdf', batch_id=self.batch_id)
            document_service.update_validation_status(db, validated.id, ValidationStatus.VALIDATED, 'jo')
            self.validated_id = validated.id
            self.pending_id = document_service.create_document(db, 'b.pdf', batch_id=self.batch_id).id
            self.foreign_id = document_service.create_document(db, 'c.pdf', batch_id=self.other_batch_id).id

    def _get(self, query, key=None):
        headers = {'X-API-Key': key if key is not None else self.raw_key}
        return self.app.get(f"/v1/documents?{query}", headers=headers)

    def _usage(self):
        with get_db(self.session_factory) as db:
            return api_key_service.get_usage(db)

    def test_batch_documents_default_to_validated(self):
        response = self._get(f"batch_id={self.batch_id}")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json['count'], 1)
        self.assertEqual(response.json['documents'][0]['id'], self.validated_id)
        self.assertEqual(response.json['batch']['batch_id'], self.batch_id)

    def test_batch_documents_by_status(self):
        response = self._get(f"batch_id={self.batch_id}&status=pending")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([document['id'] for document in response.json['documents']], [self.pending_id])

    def test_single_validated_document(self):
        response = self._get(f"document_id={self.validated_id}")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json['document']['file_name'], 'a.pdf')

    def test_unvalidated_document_is_refused(self):
        response = self._get(f"document_id={self.pending_id}")

        self.assertEqual(response.status_code, 400)
        self.assertIn('pending', response.json['error'])

    def test_other_customers_data_is_forbidden(self):
        self.assertEqual(self._get(f"batch_id={self.other_batch_id}").status_code, 403)
        self.assertEqual(self._get(f"document_id={self.foreign_id}").status_code, 403)

    def test_not_found(self):
        self.assertEqual(self._get("batch_id=999").status_code, 404)
        self.assertEqual(self._get("document_id=999").status_code, 404)

    def test_bad_parameters(self):
        self.assertEqual(self._get("").status_code, 400)
        self.assertEqual(self._get(f"batch_id={self.batch_id}&document_id={self.validated_id}").status_code, 400)
        self.assertEqual(self._get("batch_id=abc").status_code, 400)
        self.assertEqual(self._get(f"batch_id={self.batch_id}&status=shredded").status_code, 400)

    def test_missing_invalid_and_expired_keys(self):
        missing = self.app.get(f"/v1/documents?batch_id={self.batch_id}")
        invalid = self._get(f"batch_id={self.batch_id}", key='sf_nope')
        expired = self._get(f"batch_id={self.batch_id}", key=self.expired_key)

        self.assertEqual(missing.status_code, 401)
        self.assertEqual(missing.json['error'], 'Missing API key')
        self.assertEqual(invalid.status_code, 401)
        self.assertEqual(expired.status_code, 401)

    def test_every_call_is_recorded(self):
        self._get(f"batch_id={self.batch_id}")
        self._get(f"document_id={self.pending_id}")
        self.app.get(f"/v1/documents?batch_id={self.batch_id}")

        usage = self._usage()
        self.assertEqual([row.status_code for row in usage], [200, 400, 401])
        self.assertEqual([row.api_key_id for row in usage], [self.api_key.id, self.api_key.id, None])
        self.assertTrue(all(row.endpoint == '/v1/documents' and row.method == 'GET' for row in usage))
        with get_db(self.session_factory) as db:
            self.assertIsNotNone(api_key_service.get_api_key(db, self.raw_key).last_used_at)

class TestOperatorApi(unittest.TestCase):
    def setUp(self):
        self.app = app.test_client()
        self.headers = {'Authorization': 'operator-key'}
        auth.set_internal_api_key('operator-key')
        self.pipeline = MagicMock()
        patcher = patch('scanflow.api.app.pipeline', self.pipeline)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_requires_operator_credentials(self):
        response = self.app.get('/jobs/1/status', headers={'Authorization': 'wrong'})

        self.assertEqual(response.status_code, 401)
        self.pipeline.job_queue.get.assert_not_called()

    def test_job_status(self):
        job = MagicMock()
        job.status.value = 'in_progress'
        job.serialize.return_value = {'id': 1}
        self.pipeline.job_queue.get.return_value = job

        response = self.app.get('/jobs/1/status', headers=self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json['JobStatus'], 'in_progress')

        self.pipeline.job_queue.get.return_value = None
        self.assertEqual(self.app.get('/jobs/2/status', headers=self.headers).status_code, 404)

    def test_retry_failed_jobs(self):
        self.pipeline.job_queue.retry_all.return_value = {'retried': [1, 2], 'failed': []}

        response = self.app.post('/jobs/retry', json={'customer_id': 'acme'}, headers=self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json['retried'], [1, 2])
        self.pipeline.job_queue.retry_all.assert_called_once_with('acme')

    def test_cancel_retry(self):
        self.pipeline.job_queue.cancel.return_value = True
        self.assertEqual(self.app.post('/jobs/5/cancel', headers=self.headers).status_code, 200)
        self.pipeline.job_queue.cancel.assert_called_once_with(5)

        self.pipeline.job_queue.cancel.return_value = False
        self.assertEqual(self.app.post('/jobs/5/cancel', headers=self.headers).status_code, 400)

        self.pipeline.job_queue.cancel.side_effect = NotFoundError("Job 5 not found")
        response = self.app.post('/jobs/5/cancel', headers=self.headers)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json['error'], "Job 5 not found")

    @patch('scanflow.api.app.safe_db_operation')
    def test_trigger_import_scan(self, mock_safe_db_operation):
        mock_safe_db_operation.return_value = MagicMock(id=3)
        self.pipeline.scanner.scan.return_value = {'processed': 2, 'failed': 0, 'skipped': 1, 'batches': [9]}

        response = self.app.post('/imports/3/scan', headers=self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json['processed'], 2)

        mock_safe_db_operation.return_value = None
        self.assertEqual(self.app.post('/imports/4/scan', headers=self.headers).status_code, 404)

    def test_transition_batch(self):
        self.pipeline.state_machine.transition.return_value = TransitionResult(1, BatchStatus.VALIDATED, BatchStatus.EXPORTED, warnings=['xml export failed: timeout'])

        response = self.app.post('/batches/1/transition', json={'status': 'exported'}, headers=self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json['to_status'], 'exported')
        self.assertEqual(response.json['warnings'], ['xml export failed: timeout'])
        self.pipeline.state_machine.transition.assert_called_once_with(1, BatchStatus.EXPORTED, None)

    def test_transition_errors(self):
        self.assertEqual(self.app.post('/batches/1/transition', json={'status': 'shredded'}, headers=self.headers).status_code, 400)

        self.pipeline.state_machine.transition.side_effect = InvalidTransitionError(BatchStatus.NEW, BatchStatus.EXPORTED)
        response = self.app.post('/batches/1/transition', json={'status': 'exported'}, headers=self.headers)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json['error'], 'Cannot transition from new to exported')

        self.pipeline.state_machine.transition.side_effect = NotFoundError("Batch 1 not found")
        self.assertEqual(self.app.post('/batches/1/transition', json={'status': 'exported'}, headers=self.headers).status_code, 404)

    @patch('scanflow.api.app.safe_db_operation')
    def test_export_is_queued(self, mock_safe_db_operation):
        mock_safe_db_operation.return_value = MagicMock(id=1, customer_id='acme')
        self.pipeline.job_queue.enqueue.return_value = MagicMock(id=44)

        response = self.app.post('/batches/1/export', headers=self.headers)

        self.assertEqual(response.status_code, 202)
        self.assertEqual(response.json['JobID'], 44)
        self.pipeline.job_queue.enqueue.assert_called_once_with('export_batch', {'batch_id': 1}, customer_id='acme')

    def test_delete_batch(self):
        self.pipeline.state_machine.delete_batch.return_value = {'batch_id': 1, 'documents_deleted': 3}

        self.assertEqual(self.app.delete('/batches/1', headers=self.headers).json['documents_deleted'], 3)

        self.pipeline.state_machine.delete_batch.side_effect = RuntimeError("constraint failed")
        self.assertEqual(self.app.delete('/batches/1', headers=self.headers).status_code, 500)

    def test_review_duplicate(self):
        self.assertEqual(self.app.post('/duplicates/1/review', json={'decision': 'confirmed'}, headers=self.headers).status_code, 400)

        self.pipeline.detector.review.return_value.serialize.return_value = {'id': 1, 'status': 'confirmed'}
        response = self.app.post('/duplicates/1/review', json={'decision': 'confirmed', 'reviewer': 'jo'}, headers=self.headers)

        self.assertEqual(response.status_code, 200)
        self.pipeline.detector.review.assert_called_once_with(1, 'confirmed', 'jo')

    def test_validate_document(self):
        self.pipeline.validator.validate.return_value.serialize.return_value = {'id': 8, 'validation_status': 'validated'}

        response = self.app.post('/documents/8/validate', json={'status': 'validated', 'validated_by': 'jo'}, headers=self.headers)

        self.assertEqual(response.status_code, 200)
        self.pipeline.validator.validate.assert_called_once_with(8, 'validated', 'jo')

    def test_webhook_test_delivery(self):
        self.pipeline.dispatcher.send_test.return_value = DeliveryResult(success=False, status_code=401, response_body='Authorization required', error='HTTP 401', log_id=3)

        response = self.app.post('/webhooks/2/test', headers=self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json['success'])
        self.assertEqual(response.json['status_code'], 401)

    @patch('scanflow.api.app.diagnose')
    def test_webhook_diagnostics(self, mock_diagnose):
        mock_diagnose.return_value = Diagnosis('Endpoint not found', 'details', 'suggestion')

        response = self.app.get('/webhooks/2/diagnostics', headers=self.headers)

        self.assertEqual(response.json['title'], 'Endpoint not found')

    @patch('scanflow.api.app.safe_db_operation')
    def test_list_batch_duplicates(self, mock_safe_db_operation):
        detection = MagicMock()
        detection.serialize.return_value = {'id': 1, 'status': 'pending'}
        mock_safe_db_operation.return_value = [detection]

        response = self.app.get('/batches/4/duplicates?status=pending', headers=self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json['duplicates'], [{'id': 1, 'status': 'pending'}])
        self.assertEqual(self.app.get('/batches/4/duplicates?status=maybe', headers=self.headers).status_code, 400)

    @patch('scanflow.api.app.safe_db_operation')
    def test_import_logs(self, mock_safe_db_operation):
        log = MagicMock()
        log.serialize.return_value = {'file_path': 'inbox/a.pdf', 'status': 'failed'}
        mock_safe_db_operation.return_value = [log]

        response = self.app.get('/imports/3/logs?file_path=inbox/a.pdf', headers=self.headers)

        self.assertEqual(response.json['logs'][0]['status'], 'failed')
        self.assertEqual(mock_safe_db_operation.call_args[0][1:3], (3, 'inbox/a.pdf'))
