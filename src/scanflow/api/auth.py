import os
import scanflow.services.database.api_key_service as api_key_service
from scanflow.services.database.database import safe_db_operation
from scanflow.shared.utils import utcnow

class Auth:
    def __init__(self) -> None:
        self.internal_api_key = os.getenv("INTERNAL_API_KEY")

    def set_internal_api_key(self, key):
        self.internal_api_key = key

    def validate_credentials(self, key):
        return bool(key) and key == self.internal_api_key

    def resolve_api_key(self, raw_key, session_factory=None):
        """Customer API key for the read API, or None when unknown, inactive or expired."""
        api_key = safe_db_operation(api_key_service.get_api_key, raw_key, session_factory=session_factory)
        if not api_key or not api_key.is_active:
            return None
        if api_key.expires_at and api_key.expires_at <= utcnow():
            return None
        return api_key
