import hashlib
import secrets
from sqlalchemy.orm import Session
from scanflow.models.api_key import ApiKey, ApiKeyUsage
from scanflow.shared.utils import utcnow

KEY_PREFIX = 'sf_'

def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode('utf-8')).hexdigest()

def create_api_key(db: Session, customer_id: str, name=None, expires_at=None):
    raw_key = KEY_PREFIX + secrets.token_urlsafe(32)
    api_key = ApiKey(
        customer_id=customer_id,
        name=name,
        key_prefix=raw_key[:8],
        key_hash=hash_api_key(raw_key),
        expires_at=expires_at,
        is_active=True,
    )
    db.add(api_key)
    db.commit()
    db.refresh(api_key)
    return api_key, raw_key

def get_api_key(db: Session, raw_key: str):
    return db.query(ApiKey).filter(ApiKey.key_hash == hash_api_key(raw_key)).first()

def touch_api_key(db: Session, api_key_id: int):
    api_key = db.query(ApiKey).filter(ApiKey.id == api_key_id).first()
    if api_key:
        api_key.last_used_at = utcnow()
        db.commit()

def log_usage(db: Session, api_key_id, endpoint, method, status_code, response_time_ms, ip_address=None, user_agent=None):
    usage = ApiKeyUsage(
        api_key_id=api_key_id,
        endpoint=endpoint,
        method=method,
        status_code=status_code,
        response_time_ms=response_time_ms,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(usage)
    db.commit()
    return usage

def get_usage(db: Session, api_key_id=None):
    query = db.query(ApiKeyUsage)
    if api_key_id is not None:
        query = query.filter(ApiKeyUsage.api_key_id == api_key_id)
    return query.order_by(ApiKeyUsage.id.asc()).all()
