from sqlalchemy import Column, Integer, String, DateTime, Boolean, Float, JSON
from scanflow.services.database.database import Base
from scanflow.shared.utils import utcnow

DEFAULT_EXTRACTION_FIELDS = ['name', 'address', 'city', 'zip', 'signature_date']
DEFAULT_DUPLICATE_THRESHOLDS = {'name': 0.85, 'address': 0.90}

class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    extraction_fields = Column(JSON, default=lambda: list(DEFAULT_EXTRACTION_FIELDS))
    # format -> {"enabled": bool, "destination": str}
    export_config = Column(JSON, default=dict)
    duplicate_thresholds = Column(JSON, default=lambda: dict(DEFAULT_DUPLICATE_THRESHOLDS))
    check_cross_batch = Column(Boolean, default=False)
    confidence_threshold = Column(Float, default=0.8)
    created_at = Column(DateTime, default=utcnow)

    def enabled_export_formats(self):
        return {
            export_format: settings
            for export_format, settings in (self.export_config or {}).items()
            if settings and settings.get('enabled')
        }

    def serialize(self):
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'name': self.name,
            'extraction_fields': self.extraction_fields,
            'export_config': self.export_config,
            'duplicate_thresholds': self.duplicate_thresholds,
            'check_cross_batch': self.check_cross_batch,
            'confidence_threshold': self.confidence_threshold,
        }
