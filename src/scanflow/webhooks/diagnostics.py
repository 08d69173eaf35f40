from collections import namedtuple
import scanflow.services.database.webhook_service as webhook_service
from scanflow.services.database.database import safe_db_operation

Diagnosis = namedtuple('Diagnosis', ['title', 'details', 'suggestion'])

def _body(log):
    return (log.response_body or '').lower()

# checked in order, first match wins
DIAGNOSTIC_RULES = [
    (
        lambda log: log.response_status is None,
        'Destination unreachable',
        'The request never received an HTTP response: {error}',
        'Check that the URL host is correct and reachable from the internet, and that it accepts HTTPS connections.',
    ),
    (
        lambda log: 200 <= log.response_status < 300,
        'Deliveries are succeeding',
        'The last delivery was accepted with HTTP {status}.',
        'No action needed.',
    ),
    (
        lambda log: log.response_status == 401 and 'authorization required' in _body(log),
        'Flow trigger requires sign-in',
        'The destination answered 401 and asked for authorization. Flow-based receivers do this when the HTTP trigger is restricted to signed-in users.',
        'Set the HTTP trigger to allow "Anyone" to trigger the flow, or use the signed URL the trigger generates, then send a test delivery.',
    ),
    (
        lambda log: log.response_status == 401,
        'Authentication rejected',
        'The destination answered 401 Unauthorized.',
        'Add the credentials the receiver expects as a custom header on the webhook, or check the shared secret.',
    ),
    (
        lambda log: log.response_status == 403,
        'Permission denied',
        'The destination answered 403 Forbidden.',
        'Make sure the receiving account or flow has permission to accept requests from this sender.',
    ),
    (
        lambda log: log.response_status == 404,
        'Endpoint not found',
        'The destination answered 404 Not Found.',
        'Check the URL path; the flow or endpoint may have been deleted or its URL regenerated.',
    ),
    (
        lambda log: log.response_status >= 500,
        'Destination error',
        'The destination failed with HTTP {status} while handling the delivery.',
        'This is a problem on the receiving side. Check its logs; deliveries are retried automatically.',
    ),
    (
        lambda log: True,
        'Delivery rejected',
        'The destination answered HTTP {status}.',
        'Inspect the response body in the delivery history for the receiver\'s reason.',
    ),
]

def diagnose_log(log) -> Diagnosis:
    for matches, title, details, suggestion in DIAGNOSTIC_RULES:
        if matches(log):
            return Diagnosis(title, details.format(status=log.response_status, error=log.error_message or 'unknown error'), suggestion)

def diagnose(webhook_config_id, session_factory=None):
    log = safe_db_operation(webhook_service.get_latest_delivery_log, webhook_config_id, session_factory=session_factory)
    if not log:
        return Diagnosis('No deliveries yet', 'This webhook has not been called.', 'Send a test delivery to check the configuration.')
    return diagnose_log(log)
