import functools
import gzip
import inspect
import logging
import logging.handlers
import os
import shutil
import sys
from pathlib import Path
from typing import Any, Callable, ParamSpec, TypeVar

from .config import settings

P = ParamSpec("P")
R = TypeVar("R")

logger = logging.getLogger("appbackup")
logger.setLevel(logging.DEBUG)
formatter = logging.Formatter(
    "%(asctime)s %(levelname)s [%(module)s:%(funcName)s:%(lineno)d] %(message)s"
)

logs_dir = Path(settings.logs_dir)
logs_dir.mkdir(parents=True, exist_ok=True)


def gzip_rotator(source: str, dest: str) -> None:
    """Compress a rotated log file and drop the uncompressed original."""
    with open(source, "rb") as f_in:
        with gzip.open(dest + ".gz", "wb") as f_out:
            shutil.copyfileobj(f_in, f_out)
    os.remove(source)


log_file_handler = logging.handlers.TimedRotatingFileHandler(
    logs_dir / "appbackup.log", when="midnight"
)
log_file_handler.setFormatter(formatter)
log_file_handler.rotator = gzip_rotator
logger.addHandler(log_file_handler)

log_stream_handler = logging.StreamHandler(sys.stdout)
log_stream_handler.setFormatter(formatter)
logger.addHandler(log_stream_handler)


def _describe_call(
    sig: inspect.Signature, args: tuple, kwargs: dict
) -> tuple[dict[str, Any], str]:
    try:
        bound = sig.bind(*args, **kwargs)
    except TypeError:
        return {}, ""
    bound.apply_defaults()
    params = ", ".join(f"{k}={v!r}" for k, v in bound.arguments.items())
    return bound.arguments, f"[{params}] " if params else ""


def _render_prefix(prefix: str, arguments: dict[str, Any]) -> str:
    if not prefix:
        return ""
    if "{" in prefix and "}" in prefix:
        try:
            return f"{prefix.format_map(arguments)}: "
        except (KeyError, ValueError, IndexError):
            return f"{prefix}: "
    return f"{prefix}: "


def log_exception(
    prefix: str = "",
    default_return: R | None = None,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator that logs any exception raised by the wrapped function and
    returns ``default_return`` instead of propagating it.

    Works for both sync and async callables. ``prefix`` may reference the
    call's arguments by name, e.g. ``"Backup {name}"``.

    Usage:
        @log_exception("Failed to initialize backup manager")
        async def init(manager):
            await manager.initialize()
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        sig = inspect.signature(func)

        def report(exc: Exception, args: tuple, kwargs: dict) -> None:
            arguments, args_str = _describe_call(sig, args, kwargs)
            logger.error(
                f"{args_str}{_render_prefix(prefix, arguments)}"
                f"{type(exc).__name__}: {exc}",
                exc_info=True,
                stacklevel=3,
            )

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    report(e, args, kwargs)
                    return default_return  # type: ignore[return-value]

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                report(e, args, kwargs)
                return default_return  # type: ignore[return-value]

        return sync_wrapper

    return decorator
