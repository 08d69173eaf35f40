from sqlalchemy import ForeignKey, Column, Integer, String, DateTime, Boolean
from scanflow.services.database.database import Base
from scanflow.shared.utils import utcnow

class ApiKey(Base):
    __tablename__ = 'api_keys'

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(String, nullable=False)
    name = Column(String)
    key_prefix = Column(String)
    key_hash = Column(String, nullable=False, unique=True)
    is_active = Column(Boolean, default=True)
    expires_at = Column(DateTime)
    last_used_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

class ApiKeyUsage(Base):
    __tablename__ = 'api_key_usage'

    id = Column(Integer, primary_key=True, autoincrement=True)
    api_key_id = Column(Integer, ForeignKey('api_keys.id'))
    endpoint = Column(String)
    method = Column(String)
    status_code = Column(Integer)
    response_time_ms = Column(Integer)
    ip_address = Column(String)
    user_agent = Column(String)
    created_at = Column(DateTime, default=utcnow)
