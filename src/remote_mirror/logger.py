import json
import logging
import os
import sys

# Verbosity tiers for the ``LoggerVerbosity`` setting (1..3).
V1 = 1  # startup, shutdown, errors
V2 = 2  # per-file apply/skip events, filter summary
V3 = 3  # per-cycle totals

_TEXT_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """Single-line JSON formatter for structured output.

    Produces one JSON object per log record with fields: ts, level, logger,
    msg, and verbosity when the record carries one.  Exception info is
    included as an "exc" field when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        verbosity = getattr(record, "verbosity", None)
        if verbosity is not None:
            entry["verbosity"] = verbosity
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class VerbosityFilter(logging.Filter):
    """Drop records tagged with a verbosity above the configured tier.

    Records without a ``verbosity`` attribute (plain ``logger.info`` and
    friends, third-party libraries) always pass.  Warnings and errors
    always pass regardless of their tag.
    """

    def __init__(self, verbosity: int = V3) -> None:
        super().__init__()
        self.verbosity = verbosity

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        tier = getattr(record, "verbosity", None)
        return tier is None or tier <= self.verbosity


def log(
    logger: logging.Logger,
    level: int,
    verbosity: int,
    msg: str,
    *args: object,
) -> None:
    """Emit *msg* at *level*, tagged with a verbosity tier.

    Example:
        log(logger, logging.INFO, V2, "APPLIED %s", change.describe())
    """
    logger.log(level, msg, *args, extra={"verbosity": verbosity})


def _formatter(debug_format: str, with_name: bool = False) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=_DATE_FORMAT)
    if with_name:
        return logging.Formatter(
            "[%(asctime)s] [%(levelname)s] %(name)s %(message)s",
            datefmt=_DATE_FORMAT,
        )
    return logging.Formatter(_TEXT_FORMAT, datefmt=_DATE_FORMAT)


def setup_logging(
    mode: str = "console",
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
    verbosity: int = V3,
    level: str = "INFO",
) -> None:
    """
    Configure logging based on how the service is hosted.

    Args:
        mode: "service" for file logging only (no console attached),
            "console" for stderr logging.
        debug: If True, overrides LOG_LEVEL to DEBUG.
        log_file: Log file path (service mode default comes from the
            LOG_FILE env var, then /tmp/remote-mirror.log).
        debug_format: "text" (default) or "json" for structured output.
        verbosity: ``LoggerVerbosity`` tier (1..3); tagged records above
            it are dropped.
        level: Level used when LOG_LEVEL is unset (the YAML
            ``logging.level`` value).

    Environment variables:
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR).
                   Overrides *level*.
        LOG_FILE: Log file path for service mode.
    """
    env_level = (os.getenv("LOG_LEVEL") or level).upper()

    # debug parameter overrides environment
    if debug:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, env_level, logging.INFO)

    verbosity_filter = VerbosityFilter(verbosity)
    handlers: list[logging.Handler] = []

    if mode == "service":
        final_log_file = log_file or os.getenv(
            "LOG_FILE", "/tmp/remote-mirror.log"
        )
        file_handler = logging.FileHandler(final_log_file, mode="a")
        file_handler.setFormatter(_formatter(debug_format))
        handlers.append(file_handler)
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(_formatter(debug_format))
        handlers.append(stderr_handler)

        # An explicit log file in console mode is written alongside stderr
        if log_file:
            file_handler = logging.FileHandler(log_file, mode="a")
            file_handler.setFormatter(_formatter(debug_format, with_name=True))
            handlers.append(file_handler)

    for handler in handlers:
        handler.addFilter(verbosity_filter)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
    )
