import hashlib
import secrets
from datetime import datetime, timezone

from cleannft.config import settings
from cleannft.errors import ValidationError


NONCE_MODES = {"best_effort", "nonce_required"}


def _epoch_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def resolve_nonce(nonce, *, mode: str | None = None) -> str:
    mode = (mode or settings.idempotency_mode).lower()
    if mode not in NONCE_MODES:
        raise ValueError(f"Unsupported idempotency mode: {mode}")

    if nonce is not None and str(nonce) != "":
        return str(nonce)
    if mode == "nonce_required":
        raise ValidationError(
            "rawPayload.nonce is required for device submissions",
            details=[{"field": "rawPayload.nonce", "message": "Field required"}],
        )
    return secrets.token_hex(4)


def derive_waste_event_nonce(device_id, occurred_at: datetime, nonce: str) -> str:
    """Short deterministic key over device, timestamp (ms) and nonce."""
    raw = f"{device_id}|{_epoch_ms(occurred_at)}|{nonce}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]
