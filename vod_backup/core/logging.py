"""Structured logging configuration with task_id propagation"""

import logging
import sys
from typing import Any, Dict, Optional

import structlog


def mask_secret(secret: Optional[str]) -> str:
    """
    Mask a credential for safe logging and API responses

    Args:
        secret: The value to mask

    Returns:
        Empty string when unset, otherwise the last four characters prefixed by asterisks
    """
    if not secret:
        return ""
    if len(secret) <= 4:
        return "*" * len(secret)
    return f"{'*' * 8}{secret[-4:]}"


def drop_color_message_key(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Remove the duplicated message key uvicorn attaches to its access logs

    Args:
        logger: The logger instance
        method_name: The logging method name
        event_dict: The event dictionary

    Returns:
        Event dictionary without color_message
    """
    event_dict.pop("color_message", None)
    return event_dict


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Configure structured logging with structlog

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format ("json" or "console")
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        drop_color_message_key,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_task_context(task_id: str) -> None:
    """
    Attach task_id to every log entry emitted from the current context

    Each download runs in its own asyncio task, which copies the context,
    so the binding never leaks into other downloads.

    Args:
        task_id: The download task being executed
    """
    structlog.contextvars.bind_contextvars(task_id=task_id)


def get_task_context() -> Optional[str]:
    """
    Get the task_id bound to the current context

    Returns:
        Current task_id or None
    """
    return structlog.contextvars.get_contextvars().get("task_id")


def clear_task_context() -> None:
    """Remove task_id from the current context"""
    structlog.contextvars.unbind_contextvars("task_id")
