import logging
import requests
import scanflow.worker.config as config
from scanflow.services.extraction.adapters import get_adapter
from scanflow.shared.errors import ExtractionServiceError, InvalidInputError

RETRYABLE_STATUS_CODES = {408, 429}

class ExtractionClient:
    def __init__(self, url=config.EXTRACTION_SERVICE_URL, provider=config.EXTRACTION_PROVIDER, timeout=config.EXTRACTION_TIMEOUT_SECONDS, http_post=requests.post):
        self.url = url
        self.adapter = get_adapter(provider)
        self.timeout = timeout
        self.http_post = http_post

    def extract(self, document_reference, fields, mode=config.EXTRACTION_MODE):
        if not self.url:
            raise ExtractionServiceError("EXTRACTION_SERVICE_URL is not configured")

        request_body = {'document_url': document_reference, 'fields': list(fields or []), 'mode': mode}
        try:
            response = self.http_post(self.url, json=request_body, timeout=self.timeout)
        except requests.RequestException as e:
            raise ExtractionServiceError(f"Extraction service unreachable: {e}")

        if response.status_code >= 500 or response.status_code in RETRYABLE_STATUS_CODES:
            raise ExtractionServiceError(f"Extraction service returned {response.status_code}", response.status_code)
        if response.status_code >= 400:
            raise InvalidInputError(f"Extraction service rejected the document ({response.status_code}): {response.text[:200]}")

        try:
            payload = response.json()
        except ValueError:
            raise ExtractionServiceError("Extraction service returned invalid JSON", response.status_code)

        result = self.adapter.parse(payload)
        logging.info(f"Extracted {len(result.fields)} fields using the {self.adapter.name} adapter")
        return result
