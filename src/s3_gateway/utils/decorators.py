"""Decorator utilities for cross-cutting concerns."""
import functools
import logging
import time
from typing import Any, Callable, Optional, TypeVar, cast

from s3_gateway.errors import ProxyError

# Setup logging
logger = logging.getLogger(__name__)

F = TypeVar('F', bound=Callable[..., Any])


def log_backend_call(operation: Optional[str] = None, logger_name: Optional[str] = None):
    """Decorator to log the duration and outcome of an async backend call.

    Expected failures (ProxyError) are logged at debug level with their code;
    anything else is logged as an error before being re-raised.

    Args:
        operation: Name used in log lines (defaults to the function name)
        logger_name: Optional logger name (defaults to module logger)

    Returns:
        Decorator function
    """
    call_logger = logging.getLogger(logger_name) if logger_name else logger

    def decorator(func: F) -> F:
        name = operation or func.__name__

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.monotonic()
            try:
                result = await func(*args, **kwargs)
            except ProxyError as e:
                duration = (time.monotonic() - start_time) * 1000
                call_logger.debug(f"{name} failed after {duration:.1f}ms: {e.code} ({e.http_status})")
                raise
            except Exception as e:
                duration = (time.monotonic() - start_time) * 1000
                call_logger.error(f"{name} failed after {duration:.1f}ms: {str(e)}")
                raise
            duration = (time.monotonic() - start_time) * 1000
            call_logger.debug(f"{name} completed in {duration:.1f}ms")
            return result

        return cast(F, wrapper)

    return decorator
