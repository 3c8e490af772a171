"""Log formatting for Quorum.

While a deliberation runs, the engine stores its id and the current round
number in context variables. Both formatters below read them, so a log line
written from inside an expert call can be traced back to its deliberation
and round without threading ids through every function.

Environment Variables:
    LOG_FORMAT: "json" for one JSON object per line, otherwise plain text.
    LOG_LEVEL: DEBUG, INFO, WARNING or ERROR. Defaults to INFO.
"""

import copy
import logging
import os
import sys
from contextvars import ContextVar
from typing import Any, TextIO

from pythonjsonlogger import jsonlogger

_deliberation_id: ContextVar[str | None] = ContextVar("deliberation_id", default=None)
_round_number: ContextVar[int | None] = ContextVar("round_number", default=None)

LOG_FORMAT = os.getenv("LOG_FORMAT", "").lower()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

JSON_FIELDS = "%(timestamp)s %(level)s %(logger)s %(message)s"
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_deliberation_id() -> str | None:
    return _deliberation_id.get()


def set_deliberation_id(deliberation_id: str | None) -> None:
    _deliberation_id.set(deliberation_id)


def get_round_number() -> int | None:
    return _round_number.get()


def set_round_number(round_number: int | None) -> None:
    _round_number.set(round_number)


def _context_fields() -> dict[str, Any]:
    """Deliberation context for the current task, omitting unset values."""
    fields: dict[str, Any] = {}
    deliberation_id = get_deliberation_id()
    if deliberation_id:
        fields["deliberation_id"] = deliberation_id
    round_number = get_round_number()
    if round_number is not None:
        fields["round"] = round_number
    return fields


class ContextAwareJsonFormatter(jsonlogger.JsonFormatter):
    """Emits each record as JSON with ``deliberation_id`` and ``round`` keys when set."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.update(
            timestamp=self.formatTime(record, self.datefmt),
            level=record.levelname,
            logger=record.name,
            message=record.getMessage(),
        )
        log_record.update(_context_fields())
        log_record.update(getattr(record, "extra_fields", {}))


class ContextAwareFormatter(logging.Formatter):
    """Plain-text formatter.

    Prefixes the message with ``[<first 8 chars of id>] [r<round>]``.
    The record is copied first so other handlers see the original message.
    """

    def format(self, record: logging.LogRecord) -> str:
        context = _context_fields()
        tags = []
        if "deliberation_id" in context:
            tags.append(f"[{context['deliberation_id'][:8]}]")
        if "round" in context:
            tags.append(f"[r{context['round']}]")
        if not tags:
            return super().format(record)

        tagged = copy.copy(record)
        tagged.msg = " ".join(tags + [record.getMessage()])
        tagged.args = ()
        return super().format(tagged)


def setup_logging(stream: TextIO | None = None) -> None:
    """Install a single root handler according to LOG_FORMAT and LOG_LEVEL.

    Args:
        stream: Where log lines go. Defaults to stdout; the CLI passes stderr
            so that stdout carries only the exported deliberation.
    """
    level = getattr(logging, LOG_LEVEL, logging.INFO)
    as_json = LOG_FORMAT == "json"

    if as_json:
        formatter: logging.Formatter = ContextAwareJsonFormatter(
            fmt=JSON_FIELDS, datefmt="%Y-%m-%dT%H:%M:%S%z"
        )
    else:
        formatter = ContextAwareFormatter(fmt=TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    logging.getLogger(__name__).debug(
        "Logging to %s as %s at %s",
        getattr(handler.stream, "name", "stream"),
        "json" if as_json else "text",
        LOG_LEVEL,
    )
