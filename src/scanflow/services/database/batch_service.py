from sqlalchemy import func
from sqlalchemy.orm import Session
from scanflow.models.batch import Batch
from scanflow.models.document import Document
from scanflow.models.project import Project
from scanflow.models.import_log import ImportLogEntry
from scanflow.models.import_config import ImportConfig
from scanflow.models.duplicate_detection import DuplicateDetection
from scanflow.shared.batch_status import BatchStatus
from scanflow.shared.validation_status import ValidationStatus

def create_batch(db: Session, batch_name: str, customer_id=None, project_id=None):
    batch = Batch(batch_name=batch_name, customer_id=customer_id, project_id=project_id, status=BatchStatus.NEW, batch_metadata={})
    db.add(batch)
    db.commit()
    db.refresh(batch)
    return batch

def get_batch(db: Session, batch_id: int):
    return db.query(Batch).filter(Batch.id == batch_id).first()

def get_project(db: Session, project_id: int):
    if project_id is None:
        return None
    return db.query(Project).filter(Project.id == project_id).first()

def update_batch_status(db: Session, batch_id: int, expected_status: BatchStatus, batch_status: BatchStatus, timestamps=None):
    """Conditional status update. Returns False when the batch moved under us."""
    values = {Batch.status: batch_status}
    for column_name, value in (timestamps or {}).items():
        values[getattr(Batch, column_name)] = value

    updated = (
        db.query(Batch)
        .filter(Batch.id == batch_id, Batch.status == expected_status)
        .update(values, synchronize_session=False)
    )
    db.commit()
    return updated == 1

def update_batch_metadata(db: Session, batch_id: int, **changes):
    batch = get_batch(db, batch_id)
    if batch:
        metadata = dict(batch.batch_metadata or {})
        metadata.update(changes)
        batch.batch_metadata = metadata
        db.commit()
        db.refresh(batch)
        return batch
    return None

def set_batch_export_times(db: Session, batch_id: int, export_started_at=None, exported_at=None):
    batch = get_batch(db, batch_id)
    if batch:
        batch.export_started_at = export_started_at
        if exported_at:
            batch.exported_at = exported_at
        db.commit()
        db.refresh(batch)
        return batch
    return None

def count_documents_by_status(db: Session, batch_id: int):
    rows = (
        db.query(Document.validation_status, func.count(Document.id))
        .filter(Document.batch_id == batch_id)
        .group_by(Document.validation_status)
        .all()
    )
    return {status: count for status, count in rows}

def refresh_batch_counts(db: Session, batch_id: int):
    batch = get_batch(db, batch_id)
    if not batch:
        return None

    by_status = count_documents_by_status(db, batch_id)
    batch.total_documents = sum(by_status.values())
    batch.validated_documents = by_status.get(ValidationStatus.VALIDATED, 0)
    batch.error_count = by_status.get(ValidationStatus.REJECTED, 0)
    batch.processed_documents = (
        db.query(func.count(Document.id))
        .filter(Document.batch_id == batch_id, Document.extracted_at.isnot(None))
        .scalar()
    )
    db.commit()
    db.refresh(batch)
    return batch

def get_unextracted_documents(db: Session, batch_id: int):
    return (
        db.query(Document)
        .filter(Document.batch_id == batch_id, Document.extracted_at.is_(None))
        .order_by(Document.id.asc())
        .all()
    )

def delete_batch_cascade(db: Session, batch_id: int):
    """
    Delete a batch with its documents and their duplicate detections in one
    transaction. Import logs are kept, detached from the deleted rows, so the
    scanner still treats those files as imported.
    """
    try:
        batch = get_batch(db, batch_id)
        if not batch:
            return None

        document_ids = [row.id for row in db.query(Document.id).filter(Document.batch_id == batch_id).all()]
        if document_ids:
            db.query(DuplicateDetection).filter(
                (DuplicateDetection.document_id.in_(document_ids))
                | (DuplicateDetection.candidate_document_id.in_(document_ids))
            ).delete(synchronize_session=False)
        db.query(DuplicateDetection).filter(DuplicateDetection.batch_id == batch_id).delete(synchronize_session=False)

        db.query(ImportLogEntry).filter(ImportLogEntry.batch_id == batch_id).update(
            {ImportLogEntry.batch_id: None, ImportLogEntry.document_id: None}, synchronize_session=False
        )
        db.query(ImportConfig).filter(ImportConfig.target_batch_id == batch_id).update(
            {ImportConfig.target_batch_id: None}, synchronize_session=False
        )
        deleted_documents = db.query(Document).filter(Document.batch_id == batch_id).delete(synchronize_session=False)
        db.query(Batch).filter(Batch.id == batch_id).delete(synchronize_session=False)
        db.commit()
        return {'batch_id': batch_id, 'documents_deleted': deleted_documents}
    except Exception:
        db.rollback()
        raise
