class TransientError(Exception):
    """Failure expected to clear on its own; the job queue retries these with backoff."""

class ExtractionServiceError(TransientError):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code

class WebhookDeliveryError(TransientError):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code

class InvalidInputError(Exception):
    """Bad or unsupported input. Logged and skipped, never retried automatically."""

class NotFoundError(Exception):
    pass

class InvalidTransitionError(Exception):
    def __init__(self, from_status, to_status):
        super().__init__(f"Cannot transition from {from_status.value} to {to_status.value}")
        self.from_status = from_status
        self.to_status = to_status
