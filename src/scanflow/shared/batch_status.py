from enum import Enum

class BatchStatus(Enum):
    NEW = 'new'
    SCANNING = 'scanning'
    INDEXING = 'indexing'
    VALIDATION = 'validation'
    VALIDATED = 'validated'
    COMPLETE = 'complete'
    EXPORTED = 'exported'
    SUSPENDED = 'suspended'
    ERROR = 'error'
