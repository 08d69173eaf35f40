import os

JOB_QUEUE = os.getenv('JOB_QUEUE', 'scanflow-jobs')
JOB_MAX_ATTEMPTS = int(os.getenv('JOB_MAX_ATTEMPTS', 3))
JOB_RETRY_BASE_DELAY_MS = int(os.getenv('JOB_RETRY_BASE_DELAY_MS', 5000))
JOB_RETRY_MAX_DELAY_MS = int(os.getenv('JOB_RETRY_MAX_DELAY_MS', 60000))
JOB_SWEEP_INTERVAL_SECONDS = int(os.getenv('JOB_SWEEP_INTERVAL_SECONDS', 30))

EXTRACTION_SERVICE_URL = os.getenv('EXTRACTION_SERVICE_URL')
EXTRACTION_PROVIDER = os.getenv('EXTRACTION_PROVIDER', 'standard')
EXTRACTION_MODE = os.getenv('EXTRACTION_MODE', 'standard')
EXTRACTION_TIMEOUT_SECONDS = int(os.getenv('EXTRACTION_TIMEOUT_SECONDS', 120))

WEBHOOK_TIMEOUT_SECONDS = int(os.getenv('WEBHOOK_TIMEOUT_SECONDS', 10))
WEBHOOK_MAX_ATTEMPTS = int(os.getenv('WEBHOOK_MAX_ATTEMPTS', 3))

MINIO_DOCUMENT_BUCKET = os.getenv('MINIO_DOCUMENT_BUCKET', 'documents')
MINIO_EXPORT_BUCKET = os.getenv('MINIO_EXPORT_BUCKET', 'exports')
