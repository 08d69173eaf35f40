from sqlalchemy import Column, Integer, String, DateTime, Boolean, JSON
from scanflow.services.database.database import Base
from scanflow.shared.utils import utcnow, isoformat

class WebhookConfig(Base):
    __tablename__ = 'webhook_configs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(String, nullable=False, index=True)
    name = Column(String)
    url = Column(String, nullable=False)
    secret = Column(String)
    events = Column(JSON, default=list)
    headers = Column(JSON, default=dict)
    webhook_type = Column(String, default='generic')
    max_attempts = Column(Integer, default=3)
    is_active = Column(Boolean, default=True)
    last_triggered_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    def is_subscribed(self, event_type):
        events = self.events or []
        return '*' in events or event_type in events

    def serialize(self):
        # the secret never leaves the service
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'name': self.name,
            'url': self.url,
            'events': self.events or [],
            'webhook_type': self.webhook_type,
            'max_attempts': self.max_attempts,
            'is_active': self.is_active,
            'has_secret': bool(self.secret),
            'last_triggered_at': isoformat(self.last_triggered_at),
        }
