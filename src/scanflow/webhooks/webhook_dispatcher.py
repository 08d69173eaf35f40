import hmac
import json
import hashlib
import logging
import requests
from dataclasses import dataclass
from typing import Optional
import scanflow.services.database.webhook_service as webhook_service
import scanflow.worker.config as config
from scanflow.services.database.database import safe_db_operation
from scanflow.shared.errors import NotFoundError, WebhookDeliveryError
from scanflow.shared.job_type import JobType
from scanflow.shared.utils import utcnow, isoformat

TEST_EVENT_TYPE = 'test.webhook'
RESPONSE_BODY_LIMIT = 1000

# event types announced to subscribers; job events stay internal
NOTIFIABLE_EVENT_PREFIXES = ('document.', 'batch.', 'export.')

def sign_body(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()

def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    return hmac.compare_digest(sign_body(secret, body), signature or '')

@dataclass
class DeliveryResult:
    success: bool
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None
    log_id: Optional[int] = None

    def serialize(self):
        return {
            'success': self.success,
            'status_code': self.status_code,
            'response_body': self.response_body,
            'error': self.error,
            'log_id': self.log_id,
        }


class WebhookDispatcher:
    """
    Fans business events out to the tenant's webhook configs.

    ``dispatch`` only enqueues one ``deliver_webhook`` job per subscribed
    config; workers call ``deliver`` for each attempt, so retries follow the
    job queue backoff and a delivery is never sent by two workers at once.
    """

    def __init__(self, session_factory=None, job_queue=None, http_post=requests.post, timeout=config.WEBHOOK_TIMEOUT_SECONDS):
        self.session_factory = session_factory
        self.job_queue = job_queue
        self.http_post = http_post
        self.timeout = timeout

    def handle_event(self, event):
        if event.event_type.startswith(NOTIFIABLE_EVENT_PREFIXES):
            self.dispatch(event.customer_id, event.event_type, event.to_payload())

    def dispatch(self, customer_id, event_type, payload):
        configs = safe_db_operation(webhook_service.get_subscribed_configs, customer_id, event_type, session_factory=self.session_factory)
        job_ids = []
        for webhook_config in configs:
            job = self.job_queue.enqueue(
                JobType.DELIVER_WEBHOOK.value,
                {'webhook_config_id': webhook_config.id, 'event_type': event_type, 'payload': payload},
                customer_id=customer_id,
                max_attempts=webhook_config.max_attempts or config.WEBHOOK_MAX_ATTEMPTS,
            )
            job_ids.append(job.id)
        if job_ids:
            logging.info(f"Queued {len(job_ids)} webhook deliveries for {event_type}")
        return job_ids

    def deliver(self, webhook_config_id, event_type, payload, attempt_number=1) -> DeliveryResult:
        webhook_config = safe_db_operation(webhook_service.get_webhook_config, webhook_config_id, session_factory=self.session_factory)
        if not webhook_config:
            raise NotFoundError(f"Webhook config {webhook_config_id} not found")

        body = self.build_body(webhook_config, event_type, payload)
        headers = self.build_headers(webhook_config, event_type, body, attempt_number)

        result = DeliveryResult(success=False)
        try:
            response = self.http_post(webhook_config.url, data=body, headers=headers, timeout=self.timeout)
            result.status_code = response.status_code
            result.response_body = (response.text or '')[:RESPONSE_BODY_LIMIT]
            result.success = 200 <= response.status_code < 300
            if not result.success:
                result.error = f"HTTP {response.status_code}"
        except requests.RequestException as e:
            result.error = str(e)
        finally:
            # one log row per attempt, whatever happened above
            log = safe_db_operation(
                webhook_service.create_delivery_log,
                webhook_config.id, event_type, attempt_number,
                request_body=body.decode('utf-8'),
                response_status=result.status_code,
                response_body=result.response_body,
                error_message=result.error,
                delivered_at=utcnow() if result.success else None,
                session_factory=self.session_factory,
            )
            result.log_id = log.id

        if result.success:
            safe_db_operation(webhook_service.mark_webhook_triggered, webhook_config.id, session_factory=self.session_factory)
            logging.info(f"Delivered {event_type} to webhook {webhook_config.id} on attempt {attempt_number}")
        else:
            logging.warning(f"Webhook {webhook_config.id} delivery of {event_type} failed on attempt {attempt_number}: {result.error}")
        return result

    def send_test(self, webhook_config_id) -> DeliveryResult:
        payload = {
            'message': 'This is a test webhook delivery',
            'webhook_config_id': webhook_config_id,
        }
        return self.deliver(webhook_config_id, TEST_EVENT_TYPE, payload, attempt_number=1)

    def handle_delivery_job(self, job):
        payload = job.payload or {}
        result = self.deliver(payload['webhook_config_id'], payload['event_type'], payload.get('payload') or {}, attempt_number=job.attempts + 1)
        if not result.success:
            raise WebhookDeliveryError(result.error or 'Webhook delivery failed', result.status_code)
        return result.serialize()

    def build_body(self, webhook_config, event_type, payload) -> bytes:
        timestamp = isoformat(utcnow())
        if webhook_config.webhook_type == 'teams':
            # flat shape that Power Automate triggers can map without a schema
            body = {
                'eventType': event_type,
                'timestamp': timestamp,
                'title': event_type.replace('.', ' ').title(),
                **{key: value for key, value in payload.items() if not isinstance(value, (dict, list))},
            }
        else:
            body = {'event_type': event_type, 'payload': payload, 'timestamp': timestamp}
        return json.dumps(body, default=str).encode('utf-8')

    def build_headers(self, webhook_config, event_type, body: bytes, attempt_number):
        headers = {
            'Content-Type': 'application/json',
            'X-Webhook-Event': event_type,
            'X-Webhook-Attempt': str(attempt_number),
        }
        headers.update(webhook_config.headers or {})
        if webhook_config.secret:
            headers['X-Webhook-Signature'] = sign_body(webhook_config.secret, body)
        return headers
