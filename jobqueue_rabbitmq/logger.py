"""Loguru-based logging for jobqueue-rabbitmq.

The package logs through the shared loguru ``logger``. Applications that want
the package's formatting call :func:`configure_logger`; applications that also
want aio-pika/aiormq diagnostics call
:func:`configure_stdlib_logging_interception`, which routes those stdlib
loggers into loguru.
"""

import logging
import sys
from inspect import currentframe

import typing as t
from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = [
    "InterceptHandler",
    "LoggerSettings",
    "configure_logger",
    "configure_stdlib_logging_interception",
    "logger",
]


class LoggerSettings(BaseSettings):
    """Logger configuration, overridable through ``JOBQUEUE_LOG_*`` variables."""

    model_config = SettingsConfigDict(env_prefix="JOBQUEUE_LOG_", extra="ignore")

    log_level: str = "INFO"
    format: dict[str, str] = {
        "time": "<b><e>[</e> <w>{time:YYYY-MM-DD HH:mm:ss.SSS}</w> <e>]</e></b>",
        "level": " <level>{level:>8}</level>",
        "sep": " <b><w>in</w></b> ",
        "name": "<b>{extra[mod_name]:>20}</b>",
        "line": "<b><e>[</e><w>{line:^5}</w><e>]</e></b>",
        "message": "  <level>{message}</level>",
    }
    level_per_module: dict[str, str] = {}
    serialize: bool = False
    colorize: bool = True
    enqueue: bool = False
    backtrace: bool = False
    diagnose: bool = False


def _module_name(record: dict[str, t.Any]) -> str:
    """Short module name shown in the ``name`` format segment."""
    parts = record["name"].split(".")
    return parts[-1] if parts[-1] not in ("__init__", "_base") else parts[-2]


def configure_logger(
    settings: LoggerSettings | None = None,
    sink: t.Any = sys.stderr,
) -> int:
    """Replace loguru's handlers with a single configured sink.

    Returns:
        The loguru handler id of the new sink.
    """
    settings = settings or LoggerSettings()
    default_level = settings.log_level.upper()
    per_module = {k: v.upper() for k, v in settings.level_per_module.items()}

    def _patch(record: dict[str, t.Any]) -> None:
        record["extra"].setdefault("mod_name", _module_name(record))

    def _filter_by_module(record: dict[str, t.Any]) -> bool:
        level = per_module.get(record["extra"]["mod_name"], default_level)
        return record["level"].no >= logger.level(level).no

    logger.remove()
    logger.configure(patcher=t.cast("t.Any", _patch))
    return logger.add(
        sink,
        level=0,
        format="".join(settings.format.values()),
        filter=t.cast("t.Any", _filter_by_module),
        serialize=settings.serialize,
        colorize=settings.colorize,
        enqueue=settings.enqueue,
        backtrace=settings.backtrace,
        diagnose=settings.diagnose,
    )


class InterceptHandler(logging.Handler):
    """Handler to intercept standard library logging and route to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        """Emit log record via Loguru."""
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = (currentframe(), 0)
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level,
            record.getMessage(),
        )


def configure_stdlib_logging_interception(
    names: t.Iterable[str] = ("aio_pika", "aiormq"),
    level: int = logging.INFO,
) -> None:
    """Route the named stdlib loggers through Loguru."""
    for name in names:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.setLevel(level)
        std_logger.propagate = False
