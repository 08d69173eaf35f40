from enum import Enum

class ImportStatus(Enum):
    SUCCESS = 'success'
    FAILED = 'failed'
