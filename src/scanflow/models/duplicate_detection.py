from sqlalchemy import ForeignKey, Column, Integer, String, DateTime, Enum, JSON, Float, UniqueConstraint
from scanflow.services.database.database import Base
from scanflow.shared.duplicate_status import DuplicateStatus
from scanflow.shared.utils import utcnow, isoformat

def _pair_low(context):
    params = context.get_current_parameters()
    return min(params['document_id'], params['candidate_document_id'])

def _pair_high(context):
    params = context.get_current_parameters()
    return max(params['document_id'], params['candidate_document_id'])

class DuplicateDetection(Base):
    __tablename__ = 'duplicate_detections'
    __table_args__ = (
        # one detection per pair of documents, whichever side found it
        UniqueConstraint('pair_low', 'pair_high', name='uq_duplicate_detections_pair'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(Integer, ForeignKey('documents.id'), nullable=False, index=True)
    candidate_document_id = Column(Integer, ForeignKey('documents.id'), nullable=False)
    pair_low = Column(Integer, nullable=False, default=_pair_low)
    pair_high = Column(Integer, nullable=False, default=_pair_high)
    batch_id = Column(Integer, ForeignKey('batches.id'))
    similarity_score = Column(Float, nullable=False)
    duplicate_type = Column(String)
    # field -> {"current", "candidate", "similarity"}
    field_comparison = Column(JSON, default=dict)
    status = Column(Enum(DuplicateStatus), default=DuplicateStatus.PENDING, nullable=False)
    reviewed_by = Column(String)
    reviewed_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    def serialize(self):
        return {
            'id': self.id,
            'document_id': self.document_id,
            'candidate_document_id': self.candidate_document_id,
            'batch_id': self.batch_id,
            'similarity_score': self.similarity_score,
            'duplicate_type': self.duplicate_type,
            'field_comparison': self.field_comparison or {},
            'status': self.status.value,
            'reviewed_by': self.reviewed_by,
            'reviewed_at': isoformat(self.reviewed_at),
            'created_at': isoformat(self.created_at),
        }
