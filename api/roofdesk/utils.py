import hashlib, json
from datetime import datetime, timezone


def utcnow() -> datetime:
    # naive UTC; sqlite stores datetimes without tzinfo
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()


def canonical_json(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def mask_token(token: str | None) -> str:
    if not token:
        return "(none)"
    return f"{token[:8]}..."
