"""
Logging setup for the roadmap engine.

Every phase transition, ledger sync and generator call is logged with the
organization it concerns, so one tenant's roadmap history can be pulled out
of a shared log stream.

- Production: one JSON object per line, context fields flattened in
- Development / testing: colored single line with org / phase / event tags
- LOG_LEVEL overrides the default level (DEBUG locally, INFO in production)
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Request fields set by the timing middleware, then roadmap fields set by
# services through ``extra={...}``
REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id")
ROADMAP_FIELDS = ("organization_id", "phase_number", "event_type")
CONTEXT_FIELDS = REQUEST_FIELDS + ROADMAP_FIELDS


class JSONFormatter(logging.Formatter):
    """One JSON object per record; context fields only when set."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for key in CONTEXT_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """
    Terminal format: ``12:00:01 INFO     roadmap.services.phase_lifecycle: org=7 phase=2 <msg> [12ms]``.

    The event type is appended in brackets for records that carry one, which
    makes lifecycle and ledger events easy to grep during development.
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def _tags(record: logging.LogRecord) -> str:
        tags = []
        org = getattr(record, "organization_id", None)
        if org is not None:
            tags.append(f"org={org}")
        phase = getattr(record, "phase_number", None)
        if phase is not None:
            tags.append(f"phase={phase}")
        return (" " + " ".join(tags)) if tags else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now().strftime("%H:%M:%S")
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}:{self._tags(record)} {record.getMessage()}"

        event_type = getattr(record, "event_type", None)
        if event_type:
            line += f" <{event_type}>"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger for *app*'s environment."""
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    # Clearing avoids duplicate handlers when tests build several apps
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    # SDK and driver chatter; LLM call outcomes are logged by the gateway
    for noisy in ("werkzeug", "sqlalchemy.engine", "httpx", "anthropic", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info(
            "Logging configured: level=%s format=%s", level_name, "JSON" if is_prod else "readable",
        )
