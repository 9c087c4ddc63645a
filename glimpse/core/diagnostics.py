import functools
import inspect
import logging
import os
import time
from collections import Counter
from datetime import datetime
from typing import Any

# Configure a separate logger for diagnostics
logger = logging.getLogger("glimpse_diagnostics")

# Track performance metrics
metrics: Counter = Counter()
started_at = datetime.now()

DIAGNOSTICS_ENABLED = os.environ.get("GLIMPSE_DIAGNOSTICS", "").lower() in ("1", "true", "yes")


def configure_diagnostics(enabled: bool | None = None) -> None:
    """Configure diagnostics logging"""
    global DIAGNOSTICS_ENABLED
    if enabled is not None:
        DIAGNOSTICS_ENABLED = enabled
    if not DIAGNOSTICS_ENABLED or logger.handlers:
        return

    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        "%(asctime)s | DIAG | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    handler.setFormatter(formatter)
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)
    logger.info("==== GLIMPSE DIAGNOSTICS INITIALIZED ====")


def record(event: str, amount: int = 1) -> None:
    """Bump a named counter (likes_sent, matches_created, rejection:NO_CREDITS, ...)."""
    metrics[event] += amount


def track_db(func):
    """Decorator to track database operations"""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        metrics["db_operations"] += 1
        if not DIAGNOSTICS_ENABLED:
            try:
                return await func(*args, **kwargs)
            except Exception:
                metrics["errors"] += 1
                raise

        # Create a descriptor of the operation
        bound_args = inspect.signature(func).bind(*args, **kwargs)
        bound_args.apply_defaults()
        arg_desc = {
            k: (str(v) if not isinstance(v, int) else v)
            for k, v in bound_args.arguments.items()
            if k not in ("session", "self")
        }
        logger.info(f"DB OPERATION #{metrics['db_operations']} - {func.__name__} with args: {arg_desc}")

        start_time = time.time()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            metrics["errors"] += 1
            logger.error(f"DB ERROR in {func.__name__}: {e}", exc_info=True)
            raise
        execution_time = time.time() - start_time
        logger.info(f"DB OPERATION {func.__name__} completed in {execution_time:.3f}s - returned {type(result).__name__}")
        return result

    return wrapper


def get_diagnostics_report() -> dict[str, Any]:
    """Get a diagnostics report"""
    return {
        "started_at": started_at.isoformat(),
        "current_time": datetime.now().isoformat(),
        "counters": dict(metrics),
    }
