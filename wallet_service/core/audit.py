"""Audit trail for money-moving and admin actions."""

from typing import Any

from wallet_service.core.logging import get_logger
from wallet_service.models.audit_log import AuditLog

log = get_logger(__name__)


async def log_event(
    actor_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    account_id: str | None = None,
) -> None:
    """Append to audit_logs collection."""
    await AuditLog(
        actor_id=actor_id,
        account_id=account_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata=metadata or {},
    ).insert()
    log.info("audit", event_type=event_type, entity_type=entity_type, entity_id=entity_id, actor_id=actor_id)
