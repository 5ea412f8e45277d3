"""
Package-wide logger and logging decorators.
"""
import functools
import logging
import time
from typing import Callable

logger = logging.getLogger("phylotrait")


def log_runtime(wrapped: Callable):
    """Function decorator that logs the start, end and runtime of a function.

    Args:
        wrapped: The wrapped function.
    """

    @functools.wraps(wrapped)
    def wrapper(*args, **kwargs):
        t0 = time.time()
        logger.info(f"Starting {wrapped.__qualname__}...")
        try:
            return wrapped(*args, **kwargs)
        finally:
            logger.info(
                f"Finished {wrapped.__qualname__} in {time.time() - t0:.3f} s."
            )

    return wrapper


def log_kwargs(wrapped: Callable):
    """Function decorator that logs the keyword arguments of a function.

    Args:
        wrapped: The wrapped function.
    """

    @functools.wraps(wrapped)
    def wrapper(*args, **kwargs):
        logger.debug(f"{wrapped.__qualname__} keyword arguments: {kwargs}")
        return wrapped(*args, **kwargs)

    return wrapper
