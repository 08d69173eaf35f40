from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from scanflow.models.batch import Batch
from scanflow.models.duplicate_detection import DuplicateDetection
from scanflow.shared.duplicate_status import DuplicateStatus
from scanflow.shared.utils import utcnow

def get_detection(db: Session, detection_id: int):
    return db.query(DuplicateDetection).filter(DuplicateDetection.id == detection_id).first()

def find_detection_for_pair(db: Session, document_id: int, candidate_document_id: int):
    return db.query(DuplicateDetection).filter(
        DuplicateDetection.pair_low == min(document_id, candidate_document_id),
        DuplicateDetection.pair_high == max(document_id, candidate_document_id),
    ).first()

def record_detection(db: Session, document_id, candidate_document_id, batch_id, similarity_score, duplicate_type, field_comparison):
    """
    Store a detection for the pair unless one exists already. Returns
    ``(detection, created)``. A concurrent insert of the same pair in either
    order loses on the unique pair key and gets the stored row back.
    """
    existing = find_detection_for_pair(db, document_id, candidate_document_id)
    if existing:
        return existing, False

    detection = DuplicateDetection(
        document_id=document_id,
        candidate_document_id=candidate_document_id,
        batch_id=batch_id,
        similarity_score=similarity_score,
        duplicate_type=duplicate_type,
        field_comparison=field_comparison,
        status=DuplicateStatus.PENDING,
    )
    db.add(detection)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return find_detection_for_pair(db, document_id, candidate_document_id), False
    db.refresh(detection)
    return detection, True

def get_detections(db: Session, batch_id=None, status=None):
    query = db.query(DuplicateDetection)
    if batch_id is not None:
        query = query.filter(DuplicateDetection.batch_id == batch_id)
    if status:
        query = query.filter(DuplicateDetection.status == status)
    return query.order_by(DuplicateDetection.similarity_score.desc()).all()

def review_detection(db: Session, detection_id: int, status: DuplicateStatus, reviewed_by: str):
    detection = get_detection(db, detection_id)
    if detection:
        detection.status = status
        detection.reviewed_by = reviewed_by
        detection.reviewed_at = utcnow()
        db.commit()
        db.refresh(detection)
        return detection
    return None

def get_project_batch_ids(db: Session, project_id):
    return [row.id for row in db.query(Batch.id).filter(Batch.project_id == project_id).all()]
