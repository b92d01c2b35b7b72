"""
Helpers for logging resolution failures without letting the logging itself fail.
"""

import logging


def _safe_str(obj) -> str:
    """
    Convert an object to string, falling back to repr or the type name when
    __str__ itself raises.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def format_exception_message(exception: BaseException) -> str:
    """
    Render ``Type: message`` for an exception, following ``__cause__`` so the
    underlying httpx or pydantic error stays visible in a single log line.

    Args:
        exception: The exception to format

    Returns:
        A formatted string describing the exception chain
    """
    if exception is None:
        return "None"

    parts = []
    seen = set()
    current = exception
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        message = _safe_str(current)
        name = type(current).__name__
        parts.append(f"{name}: {message}" if message else name)
        current = current.__cause__
    return " <- ".join(parts)


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
    include_traceback: bool = False,
) -> None:
    """
    Log an exception together with its cause chain.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[SRV]", "[Proxy]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
        include_traceback: Attach exc_info to the record
    """
    message = f"{prefix} {format_exception_message(exception)}".strip()
    try:
        logger.log(
            level,
            message,
            exc_info=exception if include_traceback and exception is not None else None,
        )
    except Exception:
        try:
            logger.log(level, f"{prefix} Exception (logging failed)")
        except Exception:
            pass
