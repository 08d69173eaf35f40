from enum import Enum

class JobType(Enum):
    EXTRACT_DOCUMENT = 'extract_document'
    EXPORT_BATCH = 'export_batch'
    DELIVER_WEBHOOK = 'deliver_webhook'
