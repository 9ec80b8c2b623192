"""Logging setup for policy-gate.

Logs go to stderr so stdout stays reserved for the gate report. Lines
emitted during an evaluation are tagged with a short form of its evaluation
id, the same id that is written to the audit entry, so a CI log line can be
matched to its audit line.

    plain:       WARNING [3f2a9c1d]: Metadata write failed for app.tar.gz: HTTP 503
    structured:  2026-10-18T12:00:00Z WARNING policygate.engine [3f2a9c1d] ... scanner=trivy
"""

import logging
import sys
import time
from typing import Any, TextIO

ROOT_LOGGER = "policygate"
EVALUATION_FIELD = "evaluation"
SHORT_ID_LENGTH = 8

PLAIN_FORMAT = "%(levelname)s%(evaluation_tag)s: %(message)s"
STRUCTURED_FORMAT = "%(asctime)s %(levelname)s %(name)s%(evaluation_tag)s %(message)s"


class GateFormatter(logging.Formatter):
    """Formatter that tags records with their evaluation.

    In structured mode timestamps are UTC (matching the audit log) and the
    remaining context fields are appended as key=value pairs.
    """

    converter = time.gmtime

    def __init__(self, structured: bool = False) -> None:
        super().__init__(
            STRUCTURED_FORMAT if structured else PLAIN_FORMAT,
            datefmt="%Y-%m-%dT%H:%M:%SZ",
        )
        self.structured = structured

    def format(self, record: logging.LogRecord) -> str:
        fields = dict(getattr(record, "context", None) or {})
        evaluation = fields.pop(EVALUATION_FIELD, None)
        record.evaluation_tag = f" [{str(evaluation)[:SHORT_ID_LENGTH]}]" if evaluation else ""

        line = super().format(record)
        if self.structured:
            pairs = " ".join(f"{k}={v}" for k, v in fields.items() if v not in (None, ""))
            if pairs:
                line = f"{line} {pairs}"
        return line


def configure_logging(
    level: str = "INFO",
    structured: bool = False,
    stream: TextIO | None = None,
) -> None:
    """Send policygate logs to stderr (or stream).

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        structured: UTC timestamps, logger names and context fields
        stream: Destination, stderr by default
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(GateFormatter(structured=structured))

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers = [handler]
    logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the policygate namespace."""
    if not name.startswith(ROOT_LOGGER):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


class EvaluationLogger(logging.LoggerAdapter):
    """Adapter that attaches one evaluation's context to every record."""

    def process(
        self, msg: str, kwargs: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["context"] = {**self.extra, **extra.get("context", {})}
        kwargs["extra"] = extra
        return msg, kwargs


def get_evaluation_logger(name: str, evaluation_id: str, **context: Any) -> EvaluationLogger:
    """Logger whose lines carry evaluation_id and e.g. scanner and artifact."""
    return EvaluationLogger(get_logger(name), {EVALUATION_FIELD: evaluation_id, **context})
