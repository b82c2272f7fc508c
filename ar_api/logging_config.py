import logging

import structlog

from ar_api.config import settings

# Event keys that may carry Acumatica passwords, bearer tokens or API keys
REDACTED_KEYS = frozenset(
    {"password", "token", "service_token", "api_key", "authorization", "secret"}
)

# Chatty stdlib loggers; tenacity retry warnings still come through
QUIET_LOGGERS = ("httpx", "httpcore", "botocore", "boto3", "urllib3")


def redact_secrets(logger, method_name, event_dict):
    for key in list(event_dict):
        if key.lower() in REDACTED_KEYS and event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def setup_logging():
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s")
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.ENVIRONMENT == "development"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_secrets,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
