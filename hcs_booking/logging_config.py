# logging_config.py
"""Structured logging for the booking service.

Every event is rendered as one JSON line. Request handlers bind the request
method, path and the acting user into context variables, so service-level
events such as ``admission_decision`` carry them without passing them down.
"""
import logging
import sys
import uuid

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars

SERVICE_NAME = "hcs-booking"


def _add_service(logger, method_name, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_structured_logging(log_level: str = "INFO"):
    """
    Configure structlog and the standard library root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    structlog.configure(
        processors=[
            merge_contextvars,
            _add_service,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, log_level.upper()))


def bind_request(method: str, path: str) -> str:
    """Start a fresh logging context for one HTTP request; returns its id."""
    clear_contextvars()
    request_id = uuid.uuid4().hex[:12]
    bind_contextvars(request_id=request_id, method=method, path=path)
    return request_id


def bind_actor(actor_id: int, role: str):
    bind_contextvars(actor_id=actor_id, role=role)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
