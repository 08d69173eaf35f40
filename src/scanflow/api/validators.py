from enum import Enum
from typing import Union
from scanflow.shared.validation_status import ValidationStatus

VALIDATION_STATUSES = {status.value for status in ValidationStatus}

def _is_int(value):
    try:
        int(value)
        return True
    except (TypeError, ValueError):
        return False

class Validations(Enum):
    CRED = 'CRED'
    API_KEY = 'API_KEY'
    TARGET = 'TARGET'
    SINGLE_TARGET = 'SINGLE_TARGET'
    TARGET_ID = 'TARGET_ID'
    STATUS = 'STATUS'

class RequestValidator:
    DISPATCH_ERROR_MAP = {
        Validations.CRED: ('Invalid credentials', 401),
        Validations.API_KEY: ('Missing API key', 401),
        Validations.TARGET: ('Either document_id or batch_id is required', 400),
        Validations.SINGLE_TARGET: ('Provide only one of document_id or batch_id', 400),
        Validations.TARGET_ID: ('document_id and batch_id must be integers', 400),
        Validations.STATUS: (f"status must be one of {sorted(VALIDATION_STATUSES)}", 400),
        }

    def __init__(self, request, auth=None):
        self.request = request
        self.auth = auth

    def validate(self, validations_to_check: Union[list, tuple]):
        args = self.request.args
        validation_map = {
            Validations.CRED: lambda: self.auth.validate_credentials(self.request.headers.get('Authorization')),
            Validations.API_KEY: lambda: self.request.headers.get('X-API-Key'),
            Validations.TARGET: lambda: args.get('document_id') or args.get('batch_id'),
            Validations.SINGLE_TARGET: lambda: not (args.get('document_id') and args.get('batch_id')),
            Validations.TARGET_ID: lambda: all(_is_int(args[key]) for key in ('document_id', 'batch_id') if args.get(key)),
            Validations.STATUS: lambda: not args.get('status') or args.get('status') in VALIDATION_STATUSES,
        }
        return next((validation for validation in validations_to_check if not validation_map[validation]()), None)

    @staticmethod
    def dispatch_on_invalid(validation, serialize):
        error_message, status_code = RequestValidator.DISPATCH_ERROR_MAP[validation]
        return serialize({'error': error_message}), status_code
