from sqlalchemy import ForeignKey, Column, Integer, String, DateTime, Boolean
from scanflow.services.database.database import Base
from scanflow.shared.utils import utcnow, isoformat

class ImportConfig(Base):
    __tablename__ = 'import_configs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(String)
    project_id = Column(Integer, ForeignKey('projects.id'))
    name = Column(String)
    watch_folder = Column(String, nullable=False)
    batch_name_template = Column(String, default='Import_{date}')
    auto_create_batch = Column(Boolean, default=True)
    target_batch_id = Column(Integer, ForeignKey('batches.id'))
    is_active = Column(Boolean, default=True)
    last_check_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    def serialize(self):
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'project_id': self.project_id,
            'name': self.name,
            'watch_folder': self.watch_folder,
            'batch_name_template': self.batch_name_template,
            'auto_create_batch': self.auto_create_batch,
            'target_batch_id': self.target_batch_id,
            'is_active': self.is_active,
            'last_check_at': isoformat(self.last_check_at),
        }
