import unittest
from unittest.mock import MagicMock
from datetime import timedelta
import scanflow.services.database.job_service as job_service
from scanflow.jobs.job_queue import JobQueue
from scanflow.scripts.create_database import create_tables
from scanflow.services.database.database import create_session_factory, get_db
from scanflow.shared.errors import NotFoundError
from scanflow.shared.events import EventBus, JobFailed, JobCompleted, JobCancelled
from scanflow.shared.job_status import JobStatus
from scanflow.shared.utils import utcnow

class TestJobQueue(unittest.TestCase):
    def setUp(self):
        self.session_factory = create_session_factory('sqlite://')
        create_tables(self.session_factory.kw['bind'])
        self.bus = EventBus()
        self.publisher = MagicMock()
        self.queue = JobQueue(self.session_factory, self.bus, self.publisher,
                              max_attempts=3, base_delay_ms=5000, max_delay_ms=60000, rand=lambda: 0.5)

    def _make_due(self, job_id):
        with get_db(self.session_factory) as db:
            job = job_service.get_job(db, job_id)
            job.next_retry_at = utcnow() - timedelta(seconds=1)
            db.commit()

    def test_enqueue_persists_and_announces(self):
        job = self.queue.enqueue('extract_document', {'document_id': 7}, customer_id='acme')

        self.assertEqual(job.status, JobStatus.PENDING)
        self.assertEqual(job.attempts, 0)
        self.assertEqual(job.max_attempts, 3)
        self.publisher.publish.assert_called_once_with(job.id)

    def test_enqueue_survives_broker_failure(self):
        self.publisher.publish.side_effect = ConnectionError("broker down")

        job = self.queue.enqueue('extract_document', {'document_id': 7})

        self.assertEqual(self.queue.get(job.id).status, JobStatus.PENDING)

    def test_claim_is_exclusive(self):
        job = self.queue.enqueue('extract_document', {'document_id': 7})

        first = self.queue.claim(job.id)
        second = self.queue.claim(job.id)

        self.assertEqual(first.id, job.id)
        self.assertEqual(first.status, JobStatus.IN_PROGRESS)
        self.assertIsNotNone(first.started_at)
        self.assertIsNone(second)

    def test_claim_skips_jobs_not_yet_due(self):
        job = self.queue.enqueue('extract_document', {'document_id': 7})
        self.queue.claim(job.id)
        self.queue.fail(job.id, 'timeout')

        self.assertIsNone(self.queue.claim())

    def test_claim_without_id_takes_oldest_highest_priority(self):
        low = self.queue.enqueue('extract_document', {'document_id': 1})
        high = self.queue.enqueue('export_batch', {'batch_id': 1}, priority=5)

        self.assertEqual(self.queue.claim().id, high.id)
        self.assertEqual(self.queue.claim().id, low.id)
        self.assertIsNone(self.queue.claim())

    def test_backoff_schedule_then_permanent_failure(self):
        failures = []
        self.bus.subscribe(JobFailed, failures.append)
        job = self.queue.enqueue('extract_document', {'document_id': 7})
        expected_delays = [10000, 20000, 40000]

        for attempt, expected_ms in enumerate(expected_delays, start=1):
            self.assertIsNotNone(self.queue.claim(job.id))
            before = utcnow()
            failed = self.queue.fail(job.id, 'extraction timeout')

            self.assertEqual(failed.status, JobStatus.PENDING)
            self.assertEqual(failed.attempts, attempt)
            delay = (failed.next_retry_at - before).total_seconds() * 1000
            self.assertAlmostEqual(delay, expected_ms, delta=1000)
            self._make_due(job.id)

        self.assertIsNotNone(self.queue.claim(job.id))
        final = self.queue.fail(job.id, 'extraction timeout')

        self.assertEqual(final.status, JobStatus.FAILED)
        self.assertEqual(final.attempts, 3)
        self.assertIsNone(final.next_retry_at)
        self.assertEqual([event.permanent for event in failures], [False, False, False, True])

    def test_non_retryable_failure_keeps_attempts(self):
        job = self.queue.enqueue('extract_document', {})
        self.queue.claim(job.id)

        failed = self.queue.fail(job.id, 'no document', retryable=False)

        self.assertEqual(failed.status, JobStatus.FAILED)
        self.assertEqual(failed.attempts, 0)

    def test_complete_publishes_event(self):
        completed = []
        self.bus.subscribe(JobCompleted, completed.append)
        job = self.queue.enqueue('extract_document', {'document_id': 7})
        self.queue.claim(job.id)

        done = self.queue.complete(job.id, {'fields': 4})

        self.assertEqual(done.status, JobStatus.COMPLETED)
        self.assertEqual(done.result, {'fields': 4})
        self.assertEqual(completed[0].job_id, job.id)

    def test_retry_all_resubmits_only_retryable_failures(self):
        retryable = self.queue.enqueue('extract_document', {})
        self.queue.claim(retryable.id)
        self.queue.fail(retryable.id, 'bad input', retryable=False)

        exhausted = self.queue.enqueue('extract_document', {})
        with get_db(self.session_factory) as db:
            job = job_service.get_job(db, exhausted.id)
            job.status = JobStatus.FAILED
            job.attempts = 3
            db.commit()
        self.publisher.reset_mock()

        result = self.queue.retry_all()

        self.assertEqual(result, {'retried': [retryable.id], 'failed': []})
        self.assertEqual(self.queue.get(retryable.id).status, JobStatus.PENDING)
        self.assertEqual(self.queue.get(exhausted.id).status, JobStatus.FAILED)
        self.publisher.publish.assert_called_once_with(retryable.id)

    def test_requeue_resets_attempts(self):
        job = self.queue.enqueue('extract_document', {})
        with get_db(self.session_factory) as db:
            row = job_service.get_job(db, job.id)
            row.status = JobStatus.FAILED
            row.attempts = 3
            db.commit()

        requeued = self.queue.requeue(job.id)

        self.assertEqual(requeued.status, JobStatus.PENDING)
        self.assertEqual(requeued.attempts, 0)

    def test_requeue_ignores_jobs_that_are_not_failed(self):
        job = self.queue.enqueue('extract_document', {})

        self.assertIsNone(self.queue.requeue(job.id))

    def test_list_pending_retries(self):
        job = self.queue.enqueue('extract_document', {})
        self.queue.claim(job.id)
        self.queue.fail(job.id, 'timeout')

        pending = self.queue.list_pending_retries()

        self.assertEqual([p.id for p in pending], [job.id])

    def test_cancel_takes_job_out_of_retry(self):
        cancelled_events = []
        self.bus.subscribe(JobCancelled, cancelled_events.append)
        job = self.queue.enqueue('extract_document', {'document_id': 7})
        self.queue.claim(job.id)
        failed = self.queue.fail(job.id, 'extraction timeout')
        after_retry = failed.next_retry_at + timedelta(seconds=1)

        self.assertTrue(self.queue.cancel(job.id))

        with get_db(self.session_factory) as db:
            self.assertEqual(job_service.get_due_job_ids(db, now=after_retry), [])
            self.assertIsNone(job_service.claim_job(db, job.id, now=after_retry))
        cancelled = self.queue.get(job.id)
        self.assertEqual(cancelled.status, JobStatus.FAILED)
        self.assertIsNone(cancelled.next_retry_at)
        self.assertEqual(cancelled.attempts, 1)
        self.assertEqual(cancelled.last_error, 'extraction timeout')
        self.assertEqual([event.job_id for event in cancelled_events], [job.id])
        self.assertEqual(self.queue.list_pending_retries(), [])

    def test_cancel_leaves_running_and_finished_jobs_alone(self):
        running = self.queue.enqueue('extract_document', {})
        self.queue.claim(running.id)
        finished = self.queue.enqueue('extract_document', {})
        self.queue.claim(finished.id)
        self.queue.complete(finished.id)

        self.assertFalse(self.queue.cancel(running.id))
        self.assertFalse(self.queue.cancel(finished.id))
        self.assertEqual(self.queue.get(running.id).status, JobStatus.IN_PROGRESS)
        self.assertEqual(self.queue.get(finished.id).status, JobStatus.COMPLETED)

    def test_cancel_unknown_job(self):
        with self.assertRaises(NotFoundError):
            self.queue.cancel(999)

    def test_fail_ignores_jobs_that_are_not_in_progress(self):
        job = self.queue.enqueue('extract_document', {})
        self.queue.claim(job.id)
        self.queue.complete(job.id, {'fields': 2})

        self.assertIsNone(self.queue.fail(job.id, 'late timeout'))
        self.assertIsNone(self.queue.fail(self.queue.enqueue('extract_document', {}).id, 'never claimed'))

        completed = self.queue.get(job.id)
        self.assertEqual(completed.status, JobStatus.COMPLETED)
        self.assertEqual(completed.attempts, 0)
        self.assertIsNone(completed.next_retry_at)

    def test_explicit_zero_max_attempts_is_kept(self):
        job = self.queue.enqueue('deliver_webhook', {}, max_attempts=0)
        self.queue.claim(job.id)

        failed = self.queue.fail(job.id, 'HTTP 500')

        self.assertEqual(job.max_attempts, 0)
        self.assertEqual(failed.status, JobStatus.FAILED)
        self.assertEqual(failed.attempts, 0)
