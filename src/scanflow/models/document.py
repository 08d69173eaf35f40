from sqlalchemy import ForeignKey, Column, Integer, String, DateTime, Enum, JSON, Float
from scanflow.services.database.database import Base
from scanflow.shared.validation_status import ValidationStatus
from scanflow.shared.utils import utcnow, isoformat

class Document(Base):
    __tablename__ = 'documents'

    id = Column(Integer, primary_key=True, autoincrement=True)
    batch_id = Column(Integer, ForeignKey('batches.id'), index=True)
    project_id = Column(Integer, ForeignKey('projects.id'))
    file_name = Column(String, nullable=False)
    file_type = Column(String)
    storage_key = Column(String)
    file_url = Column(String)
    validation_status = Column(Enum(ValidationStatus), default=ValidationStatus.PENDING, nullable=False)
    confidence_score = Column(Float)
    # field name -> {"value", "confidence", "needs_review", "is_handwritten"}
    extracted_fields = Column(JSON, default=dict)
    line_items = Column(JSON, default=list)
    extraction_analysis = Column(JSON)
    extracted_at = Column(DateTime)
    validated_at = Column(DateTime)
    validated_by = Column(String)
    created_at = Column(DateTime, default=utcnow)

    def field_value(self, name):
        field = (self.extracted_fields or {}).get(name)
        if isinstance(field, dict):
            return field.get('value')
        return field

    def serialize(self):
        return {
            'id': self.id,
            'batch_id': self.batch_id,
            'project_id': self.project_id,
            'file_name': self.file_name,
            'file_type': self.file_type,
            'file_url': self.file_url,
            'validation_status': self.validation_status.value if self.validation_status else None,
            'confidence_score': self.confidence_score,
            'extracted_fields': self.extracted_fields or {},
            'line_items': self.line_items or [],
            'extracted_at': isoformat(self.extracted_at),
            'validated_at': isoformat(self.validated_at),
            'validated_by': self.validated_by,
            'created_at': isoformat(self.created_at),
        }
