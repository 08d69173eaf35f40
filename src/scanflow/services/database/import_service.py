from sqlalchemy import or_
from sqlalchemy.orm import Session
from scanflow.models.import_config import ImportConfig
from scanflow.models.import_log import ImportLogEntry
from scanflow.shared.import_status import ImportStatus
from scanflow.shared.utils import utcnow

def get_import_config(db: Session, config_id: int):
    return db.query(ImportConfig).filter(ImportConfig.id == config_id).first()

def get_active_import_configs(db: Session):
    return db.query(ImportConfig).filter(ImportConfig.is_active.is_(True)).order_by(ImportConfig.id.asc()).all()

def is_import_settled(db: Session, config_id: int, file_path: str):
    """A file is settled once it was imported or rejected for good; the scanner skips it from then on."""
    return db.query(ImportLogEntry.id).filter(
        ImportLogEntry.config_id == config_id,
        ImportLogEntry.file_path == file_path,
        or_(ImportLogEntry.status == ImportStatus.SUCCESS, ImportLogEntry.retryable.is_(False))
    ).first() is not None

def create_import_log(db: Session, config_id: int, file_name: str, file_path: str, status: ImportStatus, document_id=None, batch_id=None, error_message=None, retryable=True, commit=True):
    entry = ImportLogEntry(
        config_id=config_id,
        file_name=file_name,
        file_path=file_path,
        status=status,
        document_id=document_id,
        batch_id=batch_id,
        error_message=error_message,
        retryable=retryable,
    )
    db.add(entry)
    if commit:
        db.commit()
        db.refresh(entry)
    else:
        db.flush()
    return entry

def get_import_logs(db: Session, config_id: int, file_path=None):
    query = db.query(ImportLogEntry).filter(ImportLogEntry.config_id == config_id)
    if file_path:
        query = query.filter(ImportLogEntry.file_path == file_path)
    return query.order_by(ImportLogEntry.id.asc()).all()

def update_last_check_at(db: Session, config_id: int, checked_at=None):
    config = get_import_config(db, config_id)
    if config:
        config.last_check_at = checked_at or utcnow()
        db.commit()
        db.refresh(config)
        return config.last_check_at
    return None
