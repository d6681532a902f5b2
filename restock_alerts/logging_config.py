"""Logging setup: console output plus JSON log files for the alert pipeline."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from pythonjsonlogger import jsonlogger

from restock_alerts.config import settings

SERVICE_NAME = "restock-alerts"

# Identifiers carried by pipeline and job logs; always present in JSON output
CONTEXT_FIELDS = ("alert_id", "user_id", "job_name")


class AlertJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter tagging every record with the service and pipeline ids."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.utcnow().isoformat() + 'Z'
        log_record['service'] = SERVICE_NAME
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['source'] = f"{record.filename}:{record.lineno}"

        for field in CONTEXT_FIELDS:
            log_record.setdefault(field, getattr(record, field, None))


def setup_logging(base_dir: str | Path | None = None):
    """Configure logging for the application.

    Args:
        base_dir: Directory for the logs/ folder; defaults to the working
            directory.
    """
    logs_dir = (Path(base_dir) if base_dir else Path.cwd()) / "logs"
    logs_dir.mkdir(exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(console_handler)

    json_formatter = AlertJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")

    # Every record, then errors only for alerting on delivery and job failures
    for filename, level in (("app.log", logging.DEBUG), ("error.log", logging.ERROR)):
        handler = logging.FileHandler(logs_dir / filename)
        handler.setLevel(level)
        handler.setFormatter(json_formatter)
        root_logger.addHandler(handler)

    # APScheduler logs every trigger at INFO; job outcomes are logged by the
    # tracking wrapper instead.
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    return root_logger


class ContextLogger(logging.LoggerAdapter):
    """Adapter that attaches fixed context ids to every record."""

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}
        return msg, kwargs


def get_logger(name: str, **context) -> ContextLogger:
    """
    Get a logger bound to pipeline context.

    Args:
        name: Logger name (usually __name__)
        **context: Context ids, e.g. alert_id=..., job_name='retry_failed_alerts'
    """
    return ContextLogger(logging.getLogger(name), context)
