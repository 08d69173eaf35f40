import re
from datetime import datetime, timezone

def utcnow():
    # naive UTC so values compare cleanly with what the database hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)

def to_snake_case(name: str) -> str:
    name = re.sub(r'([a-z0-9])([A-Z])', r'\1_\2', str(name).strip())
    name = re.sub(r'[^0-9a-zA-Z]+', '_', name)
    return name.strip('_').lower()

def isoformat(value):
    return value.isoformat() if value else None
