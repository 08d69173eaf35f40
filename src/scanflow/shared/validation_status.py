from enum import Enum

class ValidationStatus(Enum):
    PENDING = 'pending'
    VALIDATED = 'validated'
    REJECTED = 'rejected'
    NEEDS_REVIEW = 'needs_review'
