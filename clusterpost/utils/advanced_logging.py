"""
Structured logging for clustering runs.

- configure_logging applies LoggingSettings (level, JSON or console, rotating file)
- run_context tags every event of one pipeline run with its run_id
- StageTimer logs the duration of a pipeline stage
- KSearchProgress logs each scored K candidate and the chosen K

The run ID lives in a ContextVar, so concurrent runs in different threads
never see each other's ID.
"""

import contextlib
import contextvars
import logging
import logging.handlers
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

import structlog
from structlog.types import EventDict, Processor

from clusterpost.config.settings_loader import LoggingSettings

_run_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("clusterpost_run_id", default=None)

# Settings last applied by configure_logging, and the file handler it owns
_applied: Optional[tuple] = None
_file_handler: Optional[logging.Handler] = None


# =============================================================================
# Structured Logging Configuration
# =============================================================================


def configure_logging(settings: LoggingSettings, service_name: str = "cluster-postprocess") -> None:
    """
    Configure structlog and the root logger from LoggingSettings.

    Calling again with the same settings does nothing, so every pipeline
    entry point can call it.

    Args:
        settings: Level, renderer ("json" or "console") and optional log file
        service_name: Added to every event as "service"
    """
    global _applied, _file_handler

    key = (settings.level.upper(), settings.format, settings.file, service_name)
    if key == _applied:
        return

    level = getattr(logging, settings.level.upper())
    logging.basicConfig(format="%(message)s", level=level)
    root = logging.getLogger()
    root.setLevel(level)

    if _file_handler is not None:
        root.removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None

    if settings.file:
        Path(settings.file).parent.mkdir(parents=True, exist_ok=True)
        _file_handler = logging.handlers.RotatingFileHandler(
            settings.file,
            maxBytes=100 * 1024 * 1024,  # 100MB
            backupCount=5,
        )
        _file_handler.setLevel(level)
        root.addHandler(_file_handler)

    def add_service(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict["service"] = service_name
        return event_dict

    processors: List[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        add_service,
    ]
    if settings.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    _applied = key


# =============================================================================
# Run Context
# =============================================================================


@contextlib.contextmanager
def run_context(run_id: Optional[str] = None) -> Iterator[str]:
    """
    Tag events logged inside the block with a run ID.

    Example:
        with run_context() as run_id:
            get_logger(__name__).info("clustering_complete")  # has run_id
    """
    token = _run_id.set(run_id or uuid.uuid4().hex)
    try:
        yield _run_id.get()
    finally:
        _run_id.reset(token)


def current_run_id() -> Optional[str]:
    return _run_id.get()


def get_logger(name: str) -> structlog.BoundLogger:
    """Logger bound to the active run ID, if any."""
    logger = structlog.get_logger(name)
    run_id = _run_id.get()
    if run_id:
        logger = logger.bind(run_id=run_id)
    return logger


# =============================================================================
# Stage Timing
# =============================================================================


class StageTimer:
    """
    Times one pipeline stage.

    Logs stage_completed on success. On an exception it logs stage_failed
    with the error code of ClusterPostProcessError subclasses and re-raises.
    """

    def __init__(self, stage: str, logger: Optional[structlog.BoundLogger] = None, **context: Any):
        self.stage = stage
        self.logger = logger or get_logger(__name__)
        self.context = context
        self._start = 0.0

    def __enter__(self) -> "StageTimer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        duration_ms = round((time.perf_counter() - self._start) * 1000, 2)
        if exc_type is None:
            self.logger.info("stage_completed", stage=self.stage, duration_ms=duration_ms, **self.context)
            return
        self.logger.error(
            "stage_failed",
            stage=self.stage,
            duration_ms=duration_ms,
            error_type=exc_type.__name__,
            error_code=getattr(exc_val, "error_code", None),
            error=str(exc_val),
            **self.context,
        )


# =============================================================================
# K Search Progress
# =============================================================================


class KSearchProgress:
    """Records mean silhouette width per candidate K and logs the search."""

    def __init__(
        self,
        algorithm: str,
        candidates: Sequence[int],
        logger: Optional[structlog.BoundLogger] = None,
    ):
        self.algorithm = algorithm
        self.candidates = list(candidates)
        self.logger = logger or get_logger(__name__)
        self.scores: Dict[int, float] = {}

    def scored(self, k: int, mean_width: float) -> None:
        self.scores[k] = mean_width
        self.logger.debug(
            "k_candidate_scored",
            algorithm=self.algorithm,
            k=k,
            mean_silhouette=round(mean_width, 4),
            done=len(self.scores),
            total=len(self.candidates),
        )

    def selected(self, k: int) -> None:
        self.logger.info(
            "k_selected",
            algorithm=self.algorithm,
            k=k,
            mean_silhouette=round(self.scores[k], 4),
            candidates=len(self.candidates),
        )
