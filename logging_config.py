"""
Logging configuration for the dealflow orchestrator.
Provides JSON-formatted logging to stderr with configurable log levels.
"""
import json
import logging
import sys
import uuid
import traceback
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Union
from dataclasses import dataclass
import os


LOG_LEVEL_ENV_VAR = "DEALFLOW_LOG_LEVEL"


@dataclass
class LogPayload:
    """Structured log payload for consistent logging."""
    component: Optional[str] = None
    step: Optional[str] = None
    deal_id: Optional[str] = None
    run_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    duration_ms: Optional[float] = None
    exception: Optional[str] = None
    traceback: Optional[str] = None


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def __init__(self, execution_id: str = None):
        super().__init__()
        self.execution_id = execution_id or str(uuid.uuid4())[:8]

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "execution_id": self.execution_id
        }

        # Context attributes set through `extra=` or log_with_context
        for attr in ("component", "step", "deal_id", "run_id", "data", "duration_ms"):
            if hasattr(record, attr):
                log_entry[attr] = getattr(record, attr)

        if record.exc_info:
            log_entry["error"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else "Unknown",
                "message": str(record.exc_info[1]) if record.exc_info[1] else "",
                "traceback": self.formatException(record.exc_info)
            }
        elif hasattr(record, "exception"):
            log_entry["error"] = {
                "message": record.exception,
                "traceback": getattr(record, "traceback", None)
            }

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class PipelineLogger:
    """Singleton factory class for creating configured loggers."""
    _instance = None
    _initialized = False

    def __new__(cls, execution_id: str = None):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, execution_id: str = None):
        if not self._initialized:
            self.execution_id = execution_id or str(uuid.uuid4())[:8]
            self._configured = False
            PipelineLogger._initialized = True

    def configure_logging(self, log_level: str = "INFO") -> None:
        """Configure the root logger with JSON formatting to stderr."""
        if self._configured:
            return

        numeric_level = getattr(logging, log_level.upper(), logging.INFO)

        formatter = JSONFormatter(execution_id=self.execution_id)

        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        stderr_handler.setLevel(numeric_level)

        root_logger = logging.getLogger()
        root_logger.setLevel(numeric_level)

        # Remove any existing handlers to avoid duplicates
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        root_logger.addHandler(stderr_handler)

        # httpx logs every request at INFO
        logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))

        self._configured = True

    def get_logger(self, name: str) -> logging.Logger:
        """Get a logger with the specified name."""
        return logging.getLogger(name)

    def log_with_context(self, logger: logging.Logger, level: Union[int, str], message: str,
                         payload: LogPayload = None, **kwargs) -> None:
        """Log a message with additional context using structured payload."""
        if isinstance(level, str):
            numeric_level = getattr(logging, level.upper(), logging.INFO)
        else:
            numeric_level = level

        if not logger.isEnabledFor(numeric_level):
            return

        if payload is None:
            payload = LogPayload(
                component=kwargs.get('component'),
                step=kwargs.get('step'),
                deal_id=kwargs.get('deal_id'),
                run_id=kwargs.get('run_id'),
                data=kwargs.get('data'),
                duration_ms=kwargs.get('duration_ms'),
                exception=kwargs.get('exception'),
                traceback=kwargs.get('traceback')
            )

        record = logger.makeRecord(
            logger.name, numeric_level, "", 0, message, (), None
        )

        if payload.component:
            record.component = payload.component
        if payload.step:
            record.step = payload.step
        if payload.deal_id:
            record.deal_id = payload.deal_id
        if payload.run_id:
            record.run_id = payload.run_id
        if payload.data:
            record.data = payload.data
        if payload.duration_ms is not None:
            record.duration_ms = payload.duration_ms
        if payload.exception:
            record.exception = payload.exception
        if payload.traceback:
            record.traceback = payload.traceback

        logger.handle(record)


def get_log_level_from_env_and_args(args_log_level: str = None, verbose: bool = False) -> str:
    """
    Determine log level from environment variable, CLI args, and defaults.

    Priority:
    1. CLI --verbose flag (sets DEBUG)
    2. CLI --log-level argument
    3. DEALFLOW_LOG_LEVEL environment variable
    4. Default (INFO)
    """
    if verbose:
        return "DEBUG"

    if args_log_level:
        return args_log_level.upper()

    env_level = os.getenv(LOG_LEVEL_ENV_VAR)
    if env_level:
        return env_level.upper()

    return "INFO"


def setup_pipeline_logging(log_level: str = None, verbose: bool = False,
                           execution_id: str = None) -> PipelineLogger:
    """
    Set up logging for the orchestrator with the specified configuration.

    Args:
        log_level: Log level string (DEBUG, INFO, WARNING, ERROR)
        verbose: If True, sets log level to DEBUG
        execution_id: Optional execution ID for tracking

    Returns:
        Configured PipelineLogger instance
    """
    final_log_level = get_log_level_from_env_and_args(log_level, verbose)

    pipeline_logger = PipelineLogger(execution_id)
    pipeline_logger.configure_logging(final_log_level)

    return pipeline_logger


# Global singleton instance
_pipeline_logger = PipelineLogger()


def log_step_start(logger: logging.Logger, component: str, step: str, message: str,
                   data: Dict[str, Any] = None, deal_id: str = None, run_id: str = None) -> None:
    """Log the start of an orchestration step."""
    _pipeline_logger.log_with_context(
        logger, logging.INFO, message,
        component=component, step=step, data=data, deal_id=deal_id, run_id=run_id
    )


def log_step_complete(logger: logging.Logger, component: str, step: str, message: str,
                      data: Dict[str, Any] = None, duration_ms: float = None,
                      deal_id: str = None, run_id: str = None) -> None:
    """Log the completion of an orchestration step."""
    _pipeline_logger.log_with_context(
        logger, logging.INFO, message,
        component=component, step=step, data=data, duration_ms=duration_ms,
        deal_id=deal_id, run_id=run_id
    )


def log_debug(logger: logging.Logger, message: str, component: str = None,
              data: Dict[str, Any] = None) -> None:
    """Log a debug message with optional context."""
    _pipeline_logger.log_with_context(
        logger, logging.DEBUG, message,
        component=component, data=data
    )


def log_warning(logger: logging.Logger, message: str, component: str = None,
                data: Dict[str, Any] = None, deal_id: str = None) -> None:
    """Log a degraded-but-continuing condition."""
    _pipeline_logger.log_with_context(
        logger, logging.WARNING, message,
        component=component, data=data, deal_id=deal_id
    )


def log_error(logger: logging.Logger, message: str, component: str = None,
              error: Exception = None, deal_id: str = None) -> None:
    """Log an error message with optional exception info."""
    tb = None
    if error is not None:
        tb = "".join(traceback.format_exception(type(error), error, error.__traceback__))

    _pipeline_logger.log_with_context(
        logger, logging.ERROR, message,
        component=component,
        deal_id=deal_id,
        exception=str(error) if error else None,
        traceback=tb
    )
