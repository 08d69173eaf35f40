from sqlalchemy import ForeignKey, Column, Integer, String, DateTime, Enum, JSON
from scanflow.services.database.database import Base
from scanflow.shared.batch_status import BatchStatus
from scanflow.shared.utils import utcnow, isoformat

class Batch(Base):
    __tablename__ = 'batches'

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(String)
    project_id = Column(Integer, ForeignKey('projects.id'))
    batch_name = Column(String, nullable=False)
    status = Column(Enum(BatchStatus), default=BatchStatus.NEW, nullable=False)
    total_documents = Column(Integer, default=0)
    processed_documents = Column(Integer, default=0)
    validated_documents = Column(Integer, default=0)
    error_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=utcnow)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    exported_at = Column(DateTime)
    export_started_at = Column(DateTime)
    # "metadata" is reserved on declarative classes
    batch_metadata = Column('metadata', JSON, default=dict)

    def serialize(self):
        return {
            'batch_id': self.id,
            'customer_id': self.customer_id,
            'project_id': self.project_id,
            'batch_name': self.batch_name,
            'status': self.status.value if self.status else BatchStatus.NEW.value,
            'total_documents': self.total_documents,
            'processed_documents': self.processed_documents,
            'validated_documents': self.validated_documents,
            'error_count': self.error_count,
            'created_at': isoformat(self.created_at),
            'started_at': isoformat(self.started_at),
            'completed_at': isoformat(self.completed_at),
            'exported_at': isoformat(self.exported_at),
            'metadata': self.batch_metadata or {},
        }
