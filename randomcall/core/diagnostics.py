import functools
import time
import traceback
from typing import Any, Dict

from loguru import logger

from randomcall.db.base import utcnow

# Operations slower than this are reported as warnings
SLOW_OPERATION_SECONDS = 1.0

# Track store metrics
metrics: Dict[str, Any] = {
    "store_operations": 0,
    "store_errors": 0,
    "last_error": None,
    "last_error_time": None,
}


def track_store(func):
    """Decorator to track session store operations"""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        metrics["store_operations"] += 1

        try:
            start_time = time.monotonic()
            result = await func(*args, **kwargs)
            execution_time = time.monotonic() - start_time

            if execution_time > SLOW_OPERATION_SECONDS:
                logger.warning(f"STORE OPERATION {func.__name__} took {execution_time:.2f}s")
            else:
                logger.debug(f"STORE OPERATION {func.__name__} completed in {execution_time:.3f}s")
            return result
        except Exception as e:
            metrics["store_errors"] += 1
            metrics["last_error"] = f"{func.__name__}: {e}"
            metrics["last_error_time"] = utcnow().isoformat()
            logger.error(f"STORE ERROR in {func.__name__}: {str(e)}")
            logger.debug(traceback.format_exc())
            raise

    return wrapper


def get_metrics() -> Dict[str, Any]:
    """Snapshot of the store metrics."""
    return dict(metrics)


def reset_metrics() -> None:
    metrics.update(
        store_operations=0,
        store_errors=0,
        last_error=None,
        last_error_time=None,
    )
