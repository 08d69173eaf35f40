import random
import logging
import scanflow.services.database.job_service as job_service
import scanflow.worker.config as config
from scanflow.services.database.database import get_db, safe_db_operation
from scanflow.shared.errors import NotFoundError
from scanflow.shared.events import JobFailed, JobCancelled, JobCompleted
from scanflow.shared.job_status import JobStatus

class JobQueue:
    """
    Durable job queue backed by the jobs table.

    Producers enqueue, workers claim/complete/fail. Retry timing is decided
    here, when a failure is recorded; firing the retry is left to whoever
    listens for ``JobFailed`` (the RetryScheduler in a worker process, or the
    periodic sweep).
    """

    def __init__(self, session_factory=None, event_bus=None, publisher=None,
                 max_attempts=config.JOB_MAX_ATTEMPTS,
                 base_delay_ms=config.JOB_RETRY_BASE_DELAY_MS,
                 max_delay_ms=config.JOB_RETRY_MAX_DELAY_MS,
                 rand=random.random):
        self.session_factory = session_factory
        self.event_bus = event_bus
        self.publisher = publisher
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.rand = rand

    def enqueue(self, job_type: str, payload: dict, customer_id=None, priority=0, max_attempts=None, db=None):
        """
        Create a pending job. When ``db`` is given the job joins the caller's
        transaction and the caller must ``announce`` it after committing.
        """
        if max_attempts is None:
            max_attempts = self.max_attempts
        if db is not None:
            return job_service.create_job(db, job_type, payload, customer_id, priority, max_attempts, commit=False)

        job = safe_db_operation(job_service.create_job, job_type, payload, customer_id, priority, max_attempts, session_factory=self.session_factory)
        logging.info(f"Enqueued {job_type} job {job.id}")
        self.announce(job.id)
        return job

    def announce(self, job_id):
        if not self.publisher:
            return
        try:
            self.publisher.publish(job_id)
        except Exception as e:
            # the row is durable; the worker sweep claims it once due
            logging.error('Failed to publish job %s to the broker: %s', job_id, e)

    def claim(self, job_id=None):
        return safe_db_operation(job_service.claim_job, job_id, session_factory=self.session_factory)

    def complete(self, job_id, result=None):
        job = safe_db_operation(job_service.complete_job, job_id, result, session_factory=self.session_factory)
        if job and self.event_bus:
            self.event_bus.publish(JobCompleted(job_id=job.id, job_type=job.job_type, customer_id=job.customer_id))
        return job

    def fail(self, job_id, error, retryable=True):
        job = safe_db_operation(
            job_service.fail_job, job_id, str(error), self.base_delay_ms, self.max_delay_ms,
            retryable=retryable, rand=self.rand, session_factory=self.session_factory
        )
        if not job:
            return None

        permanent = job.status == JobStatus.FAILED
        if permanent:
            logging.error(f"Job {job.id} failed permanently after {job.attempts} attempts: {error}")
        else:
            logging.info(f"Job {job.id} failed (attempt {job.attempts} of {job.max_attempts}), retrying at {job.next_retry_at}")

        if self.event_bus:
            self.event_bus.publish(JobFailed(
                job_id=job.id,
                job_type=job.job_type,
                attempts=job.attempts,
                max_attempts=job.max_attempts,
                error=str(error),
                permanent=permanent,
                next_retry_at=job.next_retry_at,
                customer_id=job.customer_id,
            ))
        return job

    def cancel(self, job_id):
        """
        Stop retrying a pending job. The row is marked failed so the worker
        sweep never picks it up again, and ``JobCancelled`` drops any timer
        held in this process. Returns False when the job had nothing to cancel.
        """
        job = safe_db_operation(job_service.get_job, job_id, session_factory=self.session_factory)
        if not job:
            raise NotFoundError(f"Job {job_id} not found")
        cancelled = safe_db_operation(job_service.cancel_retry, job_id, session_factory=self.session_factory)
        if not cancelled:
            return False

        logging.info(f"Cancelled retries for job {job_id} after {job.attempts} attempts")
        if self.event_bus:
            self.event_bus.publish(JobCancelled(job_id=job.id, customer_id=job.customer_id))
        return True

    def retry_all(self, customer_id=None):
        failed_jobs = safe_db_operation(job_service.get_failed_jobs, customer_id, retryable_only=True, session_factory=self.session_factory)
        retried, errors = [], []
        for job in failed_jobs:
            try:
                resubmitted = safe_db_operation(job_service.resubmit_failed_job, job.id, session_factory=self.session_factory)
                if resubmitted:
                    self.announce(resubmitted.id)
                    retried.append(resubmitted.id)
            except Exception as e:
                logging.error('Error resubmitting job %s: %s', job.id, e)
                errors.append({'job_id': job.id, 'error': str(e)})
        return {'retried': retried, 'failed': errors}

    def requeue(self, job_id):
        job = safe_db_operation(job_service.requeue_job, job_id, session_factory=self.session_factory)
        if job:
            self.announce(job.id)
        return job

    def get(self, job_id):
        return safe_db_operation(job_service.get_job, job_id, session_factory=self.session_factory)

    def list_failed(self, customer_id=None):
        return safe_db_operation(job_service.get_failed_jobs, customer_id, session_factory=self.session_factory)

    def list_pending_retries(self, after=None):
        return safe_db_operation(job_service.get_pending_retries, after, session_factory=self.session_factory)

    def due_job_ids(self):
        with get_db(self.session_factory) as db:
            return job_service.get_due_job_ids(db)
