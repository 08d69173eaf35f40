from sqlalchemy.orm import Session
from scanflow.models.webhook_config import WebhookConfig
from scanflow.models.webhook_delivery_log import WebhookDeliveryLog
from scanflow.shared.utils import utcnow

def get_webhook_config(db: Session, webhook_config_id: int):
    return db.query(WebhookConfig).filter(WebhookConfig.id == webhook_config_id).first()

def get_subscribed_configs(db: Session, customer_id, event_type: str):
    configs = (
        db.query(WebhookConfig)
        .filter(WebhookConfig.customer_id == customer_id, WebhookConfig.is_active.is_(True))
        .order_by(WebhookConfig.id.asc())
        .all()
    )
    return [config for config in configs if config.is_subscribed(event_type)]

def create_delivery_log(db: Session, webhook_config_id, event_type, attempt_number, request_body=None, response_status=None, response_body=None, error_message=None, delivered_at=None):
    log = WebhookDeliveryLog(
        webhook_config_id=webhook_config_id,
        event_type=event_type,
        attempt_number=attempt_number,
        request_body=request_body,
        response_status=response_status,
        response_body=response_body,
        error_message=error_message,
        delivered_at=delivered_at,
    )
    db.add(log)
    db.commit()
    db.refresh(log)
    return log

def get_delivery_logs(db: Session, webhook_config_id: int, limit=50):
    return (
        db.query(WebhookDeliveryLog)
        .filter(WebhookDeliveryLog.webhook_config_id == webhook_config_id)
        .order_by(WebhookDeliveryLog.created_at.desc(), WebhookDeliveryLog.id.desc())
        .limit(limit)
        .all()
    )

def get_latest_delivery_log(db: Session, webhook_config_id: int):
    logs = get_delivery_logs(db, webhook_config_id, limit=1)
    return logs[0] if logs else None

def mark_webhook_triggered(db: Session, webhook_config_id: int):
    config = get_webhook_config(db, webhook_config_id)
    if config:
        config.last_triggered_at = utcnow()
        db.commit()
        db.refresh(config)
        return config.last_triggered_at
    return None
