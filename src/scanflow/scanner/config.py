import os

SCAN_INTERVAL_SECONDS = int(os.getenv('SCAN_INTERVAL_SECONDS', 300))
SCAN_FILE_LIMIT = int(os.getenv('SCAN_FILE_LIMIT', 100))
ARCHIVE_PREFIX = os.getenv('SCAN_ARCHIVE_PREFIX', 'processed')

MINIO_SOURCE_BUCKET = os.getenv('MINIO_SOURCE_BUCKET', 'scans')

SUPPORTED_MIME_TYPES = {
    'application/pdf',
    'image/jpeg',
    'image/png',
    'image/tiff',
}
