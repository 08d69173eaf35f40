from sqlalchemy import ForeignKey, Column, Integer, String, DateTime, Text
from scanflow.services.database.database import Base
from scanflow.shared.utils import utcnow, isoformat

class WebhookDeliveryLog(Base):
    __tablename__ = 'webhook_delivery_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    webhook_config_id = Column(Integer, ForeignKey('webhook_configs.id'), nullable=False, index=True)
    event_type = Column(String, nullable=False)
    attempt_number = Column(Integer, nullable=False, default=1)
    request_body = Column(Text)
    response_status = Column(Integer)
    response_body = Column(Text)
    error_message = Column(Text)
    delivered_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    @property
    def succeeded(self):
        return self.response_status is not None and 200 <= self.response_status < 300

    def serialize(self):
        return {
            'id': self.id,
            'webhook_config_id': self.webhook_config_id,
            'event_type': self.event_type,
            'attempt_number': self.attempt_number,
            'response_status': self.response_status,
            'response_body': self.response_body,
            'error_message': self.error_message,
            'delivered_at': isoformat(self.delivered_at),
            'created_at': isoformat(self.created_at),
        }
