import logging
import sys
import structlog
from .config import Settings

# Event keys whose values must never reach a log sink
SENSITIVE_KEYS = frozenset({
    "password",
    "code",
    "code_verifier",
    "access_token",
    "refresh_token",
    "auth_session_token",
    "jwt_secret_key",
})


def redact_secrets(logger, method_name, event_dict):
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def setup_logging(settings: Settings):
    """
    Route structlog and stdlib logging through one handler.

    Production output is one JSON object per line; anywhere else it is the
    coloured console renderer. Credentials and grant values are redacted
    before rendering.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
    ]

    if settings.environment == "production":
        renderer = structlog.processors.JSONRenderer()
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )

    root_logger = logging.getLogger()
    # create_app may run more than once per process (tests)
    for handler in [h for h in root_logger.handlers if getattr(h, "_crm_handler", False)]:
        root_logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler._crm_handler = True
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)

    structlog.get_logger("crm.logging").debug("Logging configured", environment=settings.environment)
