from sqlalchemy import ForeignKey, Column, Integer, String, DateTime, Enum, Text, Boolean, Index, text
from scanflow.services.database.database import Base
from scanflow.shared.import_status import ImportStatus
from scanflow.shared.utils import utcnow, isoformat

class ImportLogEntry(Base):
    __tablename__ = 'import_logs'
    __table_args__ = (
        # only one successful import per file; failed attempts accumulate
        Index(
            'uq_import_logs_success',
            'config_id', 'file_path',
            unique=True,
            postgresql_where=text("status = 'SUCCESS'"),
            sqlite_where=text("status = 'SUCCESS'"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    config_id = Column(Integer, ForeignKey('import_configs.id'), nullable=False, index=True)
    file_name = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    status = Column(Enum(ImportStatus), nullable=False)
    document_id = Column(Integer)
    batch_id = Column(Integer)
    error_message = Column(Text)
    # false when retrying cannot help, e.g. an unsupported file type
    retryable = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    def serialize(self):
        return {
            'id': self.id,
            'config_id': self.config_id,
            'file_name': self.file_name,
            'file_path': self.file_path,
            'status': self.status.value,
            'document_id': self.document_id,
            'batch_id': self.batch_id,
            'error_message': self.error_message,
            'retryable': self.retryable,
            'created_at': isoformat(self.created_at),
        }
