import logging
import threading
from scanflow.shared.utils import utcnow

class RetryScheduler:
    """
    Owns the timers for scheduled job retries.

    One timer per job id; scheduling a job again replaces its timer. When a
    timer fires, ``on_due(job_id)`` is called (the pipeline publishes the id to
    the broker). Timers only live in this process, so ``start`` rebuilds them
    from the pending retries still recorded in the database.
    """

    def __init__(self, on_due, load_pending=None, timer_factory=threading.Timer):
        self.on_due = on_due
        self.load_pending = load_pending
        self.timer_factory = timer_factory
        self._timers = {}
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self):
        return self._running

    def start(self):
        with self._lock:
            self._running = True

        if not self.load_pending:
            return 0
        pending_jobs = self.load_pending(utcnow())
        for job in pending_jobs:
            self.schedule(job.id, job.next_retry_at)
        logging.info(f"Retry scheduler started with {len(pending_jobs)} pending retries")
        return len(pending_jobs)

    def shutdown(self):
        with self._lock:
            self._running = False
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def schedule(self, job_id, run_at):
        delay = max(0.0, (run_at - utcnow()).total_seconds()) if run_at else 0.0
        timer = self.timer_factory(delay, self._fire, args=(job_id,))
        timer.daemon = True
        with self._lock:
            if not self._running:
                return False
            previous = self._timers.pop(job_id, None)
            self._timers[job_id] = timer
        if previous:
            previous.cancel()
        timer.start()
        return True

    def cancel(self, job_id):
        with self._lock:
            timer = self._timers.pop(job_id, None)
        if timer:
            timer.cancel()
            logging.info(f"Cancelled scheduled retry for job {job_id}")
            return True
        return False

    def scheduled_job_ids(self):
        with self._lock:
            return sorted(self._timers)

    def _fire(self, job_id):
        with self._lock:
            self._timers.pop(job_id, None)
            if not self._running:
                return
        try:
            self.on_due(job_id)
        except Exception as e:
            logging.error('Failed to resubmit job %s for retry: %s', job_id, e)

    # event bus handlers

    def handle_job_failed(self, event):
        if not event.permanent and event.next_retry_at:
            self.schedule(event.job_id, event.next_retry_at)

    def handle_job_cancelled(self, event):
        self.cancel(event.job_id)
