"""
Graceful failure guard for side effects that must not steer the engine.

Completion-event consumers (achievements, analytics) receive the final result
of an adaptive session but never influence engine decisions. A consumer that
raises is logged and skipped; the session outcome is already committed.

This is distinct from the engine's error taxonomy in ``exceptions.py``, which
covers failures the caller must see.

Usage:
    from assessment_engine.core.graceful_failure import graceful_failure

    with graceful_failure("deliver completion event", logger,
                          context={"session_id": session.session_id}):
        consumer(event)
"""

import logging
from contextlib import contextmanager
from typing import Any, Generator, Optional


@contextmanager
def graceful_failure(
    operation_name: str,
    logger: logging.Logger,
    *,
    log_level: int = logging.WARNING,
    exc_info: bool = False,
    context: Optional[dict[str, Any]] = None,
) -> Generator[None, None, None]:
    """Run the wrapped block; log and continue if it raises.

    Args:
        operation_name: Human-readable name of the operation for logging
            (e.g., "deliver completion event").
        logger: The logger instance to use.
        log_level: Logging level for the failure message. Defaults to WARNING.
        exc_info: Whether to include the traceback in the log record.
        context: Optional key/value pairs appended to the log message.

    Yields:
        None - the context manager is used for its side effects only.
    """
    try:
        yield
    except Exception as e:
        if context:
            context_str = ", ".join(f"{k}={v}" for k, v in context.items())
            message = f"Failed to {operation_name} ({context_str}): {e}"
        else:
            message = f"Failed to {operation_name}: {e}"

        logger.log(log_level, message, exc_info=exc_info)
