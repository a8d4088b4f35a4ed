"""
Base classes for domain contracts.
"""
import hashlib
import json
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict


class DomainEntity(BaseModel):
    """Base class for all immutable domain contracts."""
    model_config = ConfigDict(frozen=True, extra="forbid", allow_inf_nan=False)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def canonical_json(self) -> str:
        """Key-sorted JSON used for digests and deterministic ids."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))


def digest_of(payload: dict[str, Any]) -> str:
    """SHA-256 over the key-sorted JSON form of ``payload``."""
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def now_utc() -> datetime:
    """Returns current UTC time."""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
