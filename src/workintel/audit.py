"""Summary: Structured audit logging for security-relevant events.

Importance: Leaves a greppable JSON trail for invites and integration changes.
Alternatives: Persist audit events to a dedicated table.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any


logger = logging.getLogger("workintel.audit")


def audit_log(event: str, **details: Any) -> dict[str, Any]:
    """Summary: Emit one JSON line describing ``event``.

    Importance: Keeps audit records machine readable while using the standard logging pipeline.
    Alternatives: Send events to an external audit service.
    """

    record = {"timestamp": datetime.now(timezone.utc).isoformat(), "event": event, **details}
    logger.info(json.dumps(record, default=str, sort_keys=False))
    return record
