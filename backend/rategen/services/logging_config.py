"""Structured logging configuration for the rate generator."""
import logging
import json
import sys
from datetime import datetime, timezone

# Extra fields copied into JSON log lines when a record carries them.
_EXTRA_FIELDS = ("function", "duration_ms", "line_count", "net_cost", "total_cost", "rounds", "converged")


class JSONFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, logger, message and rategen extras."""
    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_entry.update(
            (field, getattr(record, field)) for field in _EXTRA_FIELDS if hasattr(record, field)
        )
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", json_output: bool = True):
    """Route all rategen loggers to stderr, keeping stdout free for CLI output."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        JSONFormatter() if json_output
        else logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
    )
    root.handlers = [handler]
