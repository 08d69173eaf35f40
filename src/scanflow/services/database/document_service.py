from sqlalchemy.orm import Session
from scanflow.models.document import Document
from scanflow.shared.validation_status import ValidationStatus
from scanflow.shared.utils import utcnow

MAX_DUPLICATE_CANDIDATES = 500

def create_document(db: Session, file_name: str, batch_id=None, project_id=None, file_type=None, storage_key=None, file_url=None, commit=True):
    document = Document(
        file_name=file_name,
        batch_id=batch_id,
        project_id=project_id,
        file_type=file_type,
        storage_key=storage_key,
        file_url=file_url,
        validation_status=ValidationStatus.PENDING,
        extracted_fields={},
        line_items=[],
    )
    db.add(document)
    if commit:
        db.commit()
        db.refresh(document)
    else:
        db.flush()
    return document

def get_document(db: Session, document_id: int):
    return db.query(Document).filter(Document.id == document_id).first()

def get_documents_for_batch(db: Session, batch_id: int, validation_status=None):
    query = db.query(Document).filter(Document.batch_id == batch_id)
    if validation_status:
        query = query.filter(Document.validation_status == validation_status)
    return query.order_by(Document.id.asc()).all()

def get_batched_document_ids(db: Session, batch_id=None):
    query = db.query(Document.id).filter(Document.batch_id.isnot(None))
    if batch_id is not None:
        query = query.filter(Document.batch_id == batch_id)
    return [row.id for row in query.order_by(Document.id.asc()).all()]

def get_duplicate_candidates(db: Session, document: Document, batch_ids, limit=MAX_DUPLICATE_CANDIDATES):
    return (
        db.query(Document)
        .filter(Document.id != document.id, Document.batch_id.in_(batch_ids))
        .order_by(Document.id.asc())
        .limit(limit)
        .all()
    )

def apply_extraction(db: Session, document_id: int, result, confidence_threshold: float):
    document = get_document(db, document_id)
    if not document:
        return None

    document.extracted_fields = result.fields_as_dict()
    document.line_items = result.line_items
    document.extraction_analysis = result.analysis
    document.confidence_score = result.document_confidence
    document.extracted_at = utcnow()
    if document.validation_status in (ValidationStatus.PENDING, ValidationStatus.NEEDS_REVIEW):
        needs_review = result.needs_review() or (
            result.document_confidence is not None and result.document_confidence < confidence_threshold
        )
        document.validation_status = ValidationStatus.NEEDS_REVIEW if needs_review else ValidationStatus.PENDING

    db.commit()
    db.refresh(document)
    return document

def update_validation_status(db: Session, document_id: int, validation_status: ValidationStatus, validated_by=None):
    document = get_document(db, document_id)
    if document:
        document.validation_status = validation_status
        document.validated_by = validated_by
        document.validated_at = utcnow()
        db.commit()
        db.refresh(document)
        return document
    return None
