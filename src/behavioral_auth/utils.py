"""
Utility functions and decorators for the behavioral authentication system.

This module provides general-purpose helpers used across the pipeline:
timing and retry decorators, session identifiers, clamping and the
structlog configuration.
"""

import functools
import logging
import sys
import time
import uuid
from typing import Any, Callable, Optional, Tuple, Type, TypeVar
import structlog

# Initialize structured logger
logger = structlog.get_logger(__name__)

# Type variable for generic decorators
F = TypeVar("F", bound=Callable[..., Any])


def _stderr_logger(*args: Any) -> structlog.PrintLogger:
    # sys.stderr is resolved per logger, not at configure time
    return structlog.PrintLogger(file=sys.stderr)


def configure_logging(level: str = "INFO", structured: bool = True) -> None:
    """
    Configure structlog for the application.

    Log events always go to standard error, keeping standard output free for
    command results.

    Parameters
    ----------
    level : str, default="INFO"
        Minimum log level name.
    structured : bool, default=True
        Render JSON lines when True, human-readable console output otherwise.

    Examples
    --------
    >>> configure_logging("DEBUG", structured=False)
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    renderer = (
        structlog.processors.JSONRenderer()
        if structured
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )


def timer(func: F) -> F:
    """
    Decorator logging the wall-clock duration of a pipeline stage.

    Successful calls are logged at debug level; failures are logged as
    warnings with the exception type and re-raised unchanged.

    Parameters
    ----------
    func : Callable
        Pipeline stage to be timed.

    Returns
    -------
    Callable
        Wrapped function with timing capability.

    Examples
    --------
    >>> @timer
    ... def extract():
    ...     return [1.0, 2.0]
    >>> extract()  # Logs "Stage completed" with duration_ms
    [1.0, 2.0]
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        started = time.perf_counter()
        stage = f"{func.__module__.rsplit('.', 1)[-1]}.{func.__name__}"

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.warning(
                "Stage failed",
                stage=stage,
                duration_ms=round((time.perf_counter() - started) * 1000, 3),
                error_type=type(e).__name__,
                error=str(e),
            )
            raise

        logger.debug(
            "Stage completed",
            stage=stage,
            duration_ms=round((time.perf_counter() - started) * 1000, 3),
        )
        return result

    return wrapper


def retry(
    max_attempts: int = 3,
    delay: float = 0.0,
    backoff: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    pass_attempt: bool = False,
) -> Callable[[F], F]:
    """
    Decorator re-running a function when it raises one of ``exceptions``.

    Parameters
    ----------
    max_attempts : int, default=3
        Maximum number of attempts.
    delay : float, default=0.0
        Initial pause between attempts in seconds; no pause when zero.
    backoff : float, default=2.0
        Multiplier applied to the pause after each failure.
    exceptions : tuple, default=(Exception,)
        Exception types that trigger another attempt.
    pass_attempt : bool, default=False
        Pass the zero-based attempt number as the ``attempt`` keyword so the
        function can reseed or otherwise vary its next run.

    Returns
    -------
    Callable
        Decorator function.

    Examples
    --------
    >>> @retry(max_attempts=3, exceptions=(ModelError,), pass_attempt=True)
    ... def fit(attempt):
    ...     return attempt
    >>> fit()
    0
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            pause = delay

            for attempt in range(max_attempts):
                if pass_attempt:
                    kwargs["attempt"] = attempt
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts - 1:
                        logger.error(
                            "Giving up after repeated failures",
                            function=func.__name__,
                            attempts=max_attempts,
                            error=str(e),
                        )
                        raise

                    logger.warning(
                        "Attempt failed, retrying",
                        function=func.__name__,
                        attempt=attempt + 1,
                        max_attempts=max_attempts,
                        error=str(e),
                    )
                    if pause > 0:
                        time.sleep(pause)
                        pause *= backoff

        return wrapper

    return decorator


def generate_session_id(prefix: Optional[str] = None) -> str:
    """
    Generate a unique capture session identifier.

    Examples
    --------
    >>> generate_session_id("keystroke").startswith("keystroke_")
    True
    """
    session_id = uuid.uuid4().hex
    return f"{prefix}_{session_id}" if prefix else session_id


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    """Clamp ``value`` into ``[lower, upper]``."""
    return float(max(lower, min(upper, value)))
