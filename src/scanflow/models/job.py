from sqlalchemy import Column, Integer, String, DateTime, Enum, JSON, Text, Index
from scanflow.services.database.database import Base
from scanflow.shared.job_status import JobStatus
from scanflow.shared.utils import utcnow, isoformat

class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        Index('ix_jobs_status_next_retry_at', 'status', 'next_retry_at'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_type = Column(String, nullable=False)
    payload = Column(JSON, default=dict)
    customer_id = Column(String)
    priority = Column(Integer, default=0)
    status = Column(Enum(JobStatus), default=JobStatus.PENDING, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=3, nullable=False)
    next_retry_at = Column(DateTime)
    last_error = Column(Text)
    result = Column(JSON)
    created_at = Column(DateTime, default=utcnow)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def serialize(self):
        return {
            'id': self.id,
            'job_type': self.job_type,
            'payload': self.payload,
            'customer_id': self.customer_id,
            'status': self.status.value if self.status else None,
            'attempts': self.attempts,
            'max_attempts': self.max_attempts,
            'next_retry_at': isoformat(self.next_retry_at),
            'last_error': self.last_error,
            'result': self.result,
            'created_at': isoformat(self.created_at),
            'started_at': isoformat(self.started_at),
            'completed_at': isoformat(self.completed_at),
        }
