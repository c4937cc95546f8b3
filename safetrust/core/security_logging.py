"""Security event log for MFA decisions.

Events go to the ``safetrust.security`` logger so deployments can route them
to a separate sink. Denials log at WARNING, everything else at INFO.
"""

import logging
from typing import Any, Literal

from safetrust.core.logging import get_logger

logger = get_logger("safetrust.security")

Outcome = Literal["allow", "deny"]


def log_security_event(
    event_type: str,
    outcome: Outcome,
    reason_code: str | None = None,
    user_id: str | None = None,
    ip_address: str | None = None,
    **extra_fields: Any,
) -> None:
    """
    Emit one structured security event.

    Args:
        event_type: e.g. "mfa_enabled", "mfa_rate_limited", "mfa_backup_code_used"
        outcome: "allow" or "deny"
        reason_code: why a request was denied
        user_id: subject of the event
        ip_address: source address of the request
        **extra_fields: anything else worth correlating (admin id, method)
    """
    if outcome not in ("allow", "deny"):
        raise ValueError(f"Unknown security outcome: {outcome}")

    fields: dict[str, Any] = {"event_type": event_type, "outcome": outcome}
    optional = {"reason_code": reason_code, "user_id": user_id, "ip_address": ip_address}
    fields.update({key: value for key, value in optional.items() if value})
    fields.update(extra_fields)

    level = logging.WARNING if outcome == "deny" else logging.INFO
    logger.log(level, f"security {event_type}: {outcome}", extra=fields)
