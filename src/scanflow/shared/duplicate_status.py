from enum import Enum

class DuplicateStatus(Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    DISMISSED = 'dismissed'
