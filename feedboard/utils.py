import functools
import sys
import time

from loguru import logger


def setup_logging(level: str = "INFO") -> None:
    """Replace loguru's default sink with a leveled stderr sink."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
        ),
    )


def log_duration(func):
    """
    A decorator that logs how long an async function took.

    Exceptions are logged with the elapsed time and re-raised unchanged.
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        func_name = func.__qualname__
        start = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            elapsed = time.perf_counter() - start
            logger.error(f"{func_name} failed after {elapsed:.3f}s: {type(e).__name__}: {e}")
            raise
        logger.debug(f"{func_name} finished in {time.perf_counter() - start:.3f}s")
        return result

    return wrapper
