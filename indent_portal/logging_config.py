import json
import logging
from datetime import datetime, timezone
from typing import Any

from indent_portal.config import Settings

_STANDARD_ATTRS = {
    'name',
    'msg',
    'args',
    'levelname',
    'levelno',
    'pathname',
    'filename',
    'module',
    'exc_info',
    'exc_text',
    'stack_info',
    'lineno',
    'funcName',
    'created',
    'msecs',
    'relativeCreated',
    'thread',
    'threadName',
    'processName',
    'process',
    'taskName',
    'message',
}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, extra record attributes included."""

    def format(self, record: logging.LogRecord) -> str:
        log_object: dict[str, Any] = {
            'timestamp': datetime.now(tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith('_') or value is None:
                continue
            log_object[key] = value
        if record.exc_info:
            log_object['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(log_object, ensure_ascii=False, default=str)


def setup_logging(settings: Settings) -> None:
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    formatter: logging.Formatter = (
        JsonFormatter()
        if settings.is_production
        else logging.Formatter('[%(asctime)s] %(levelname)s in %(name)s: %(message)s')
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)
    root_logger.addHandler(handler)

    for logger_name in ('uvicorn', 'uvicorn.error', 'uvicorn.access'):
        logger = logging.getLogger(logger_name)
        logger.handlers.clear()
        logger.propagate = True

    logging.captureWarnings(True)
