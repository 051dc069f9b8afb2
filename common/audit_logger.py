import structlog

audit_logger = structlog.get_logger("crm.audit")


async def log_audit_event(event_type: str, user_id: str = None, details: dict = None):
    """Record a security-relevant OAuth event. Never pass raw secrets in details."""
    audit_logger.info(
        "Audit Event",
        event_type=event_type,
        user_id=user_id,
        details=details if details is not None else {},
    )
