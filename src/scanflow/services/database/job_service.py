import random
from sqlalchemy import or_
from sqlalchemy.orm import Session
from scanflow.models.job import Job
from scanflow.shared.job_status import JobStatus
from scanflow.shared.retry_policy import next_retry_time
from scanflow.shared.utils import utcnow

CLAIM_CANDIDATES = 10

def create_job(db: Session, job_type: str, payload: dict, customer_id=None, priority=0, max_attempts=3, commit=True):
    job = Job(
        job_type=job_type,
        payload=payload or {},
        customer_id=customer_id,
        priority=priority,
        max_attempts=max_attempts,
        status=JobStatus.PENDING,
        attempts=0,
    )
    db.add(job)
    if commit:
        db.commit()
        db.refresh(job)
    else:
        db.flush()
    return job

def get_job(db: Session, job_id: int):
    return db.query(Job).filter(Job.id == job_id).first()

def claim_job(db: Session, job_id=None, now=None):
    """
    Move one due pending job to in_progress and return it, or None.

    The status check lives in the UPDATE itself, so when two workers race for
    the same row only one of them sees a rowcount of 1.
    """
    now = now or utcnow()
    query = db.query(Job.id).filter(
        Job.status == JobStatus.PENDING,
        or_(Job.next_retry_at.is_(None), Job.next_retry_at <= now)
    )
    if job_id is not None:
        query = query.filter(Job.id == job_id)

    candidates = query.order_by(Job.priority.desc(), Job.created_at.asc(), Job.id.asc()).limit(CLAIM_CANDIDATES).all()
    for (candidate_id,) in candidates:
        claimed = (
            db.query(Job)
            .filter(Job.id == candidate_id, Job.status == JobStatus.PENDING)
            .update({Job.status: JobStatus.IN_PROGRESS, Job.started_at: now, Job.updated_at: now}, synchronize_session=False)
        )
        db.commit()
        if claimed == 1:
            return get_job(db, candidate_id)
    return None

def complete_job(db: Session, job_id: int, result=None):
    job = get_job(db, job_id)
    if job:
        job.status = JobStatus.COMPLETED
        job.result = result
        job.next_retry_at = None
        job.completed_at = utcnow()
        db.commit()
        db.refresh(job)
        return job
    return None

def fail_job(db: Session, job_id: int, error: str, base_delay_ms: int, max_delay_ms: int, retryable=True, rand=random.random):
    """Record a failure for a claimed job. Jobs that are not in progress are left alone and None is returned."""
    job = get_job(db, job_id)
    if not job or job.status != JobStatus.IN_PROGRESS:
        return None

    now = utcnow()
    values = {Job.last_error: error, Job.updated_at: now}
    if not retryable or job.attempts >= job.max_attempts:
        values.update({Job.status: JobStatus.FAILED, Job.next_retry_at: None, Job.completed_at: now})
    else:
        next_retry_at, _ = next_retry_time(now, job.attempts + 1, base_delay_ms, max_delay_ms, rand=rand)
        values.update({Job.status: JobStatus.PENDING, Job.attempts: job.attempts + 1, Job.next_retry_at: next_retry_at})

    updated = (
        db.query(Job)
        .filter(Job.id == job_id, Job.status == JobStatus.IN_PROGRESS)
        .update(values, synchronize_session=False)
    )
    db.commit()
    if updated != 1:
        return None
    db.refresh(job)
    return job

def cancel_retry(db: Session, job_id: int):
    """
    Take a pending job out of retry for good. Attempts and last_error are kept;
    the job ends up failed with no next_retry_at, so neither a timer nor the
    sweep can claim it again.
    """
    now = utcnow()
    cancelled = (
        db.query(Job)
        .filter(Job.id == job_id, Job.status == JobStatus.PENDING)
        .update({Job.status: JobStatus.FAILED, Job.next_retry_at: None, Job.completed_at: now, Job.updated_at: now}, synchronize_session=False)
    )
    db.commit()
    return cancelled == 1

def get_failed_jobs(db: Session, customer_id=None, retryable_only=False):
    query = db.query(Job).filter(Job.status == JobStatus.FAILED)
    if customer_id:
        query = query.filter(Job.customer_id == customer_id)
    if retryable_only:
        query = query.filter(Job.attempts < Job.max_attempts)
    return query.order_by(Job.updated_at.desc()).all()

def get_pending_retries(db: Session, after=None):
    query = db.query(Job).filter(Job.status == JobStatus.PENDING, Job.next_retry_at.isnot(None))
    if after is not None:
        query = query.filter(Job.next_retry_at > after)
    return query.order_by(Job.next_retry_at.asc()).all()

def get_due_job_ids(db: Session, now=None, limit=100):
    now = now or utcnow()
    rows = (
        db.query(Job.id)
        .filter(Job.status == JobStatus.PENDING, or_(Job.next_retry_at.is_(None), Job.next_retry_at <= now))
        .order_by(Job.priority.desc(), Job.created_at.asc())
        .limit(limit)
        .all()
    )
    return [row.id for row in rows]

def resubmit_failed_job(db: Session, job_id: int):
    job = get_job(db, job_id)
    if job and job.status == JobStatus.FAILED and job.attempts < job.max_attempts:
        job.status = JobStatus.PENDING
        job.next_retry_at = None
        job.completed_at = None
        db.commit()
        db.refresh(job)
        return job
    return None

def requeue_job(db: Session, job_id: int):
    job = get_job(db, job_id)
    if job and job.status == JobStatus.FAILED:
        job.status = JobStatus.PENDING
        job.attempts = 0
        job.next_retry_at = None
        job.completed_at = None
        db.commit()
        db.refresh(job)
        return job
    return None
