"""
Logging setup for the API process and the Celery workers

JSON lines in production so that blog, school and platform ids stay
searchable; plain text elsewhere.
"""
import os
import logging
import json
from datetime import datetime, timezone

# Extra attributes promoted into structured log entries when present
_CONTEXT_FIELDS = (
    "user_id",
    "request_id",
    "duration_ms",
    "blog_id",
    "school_id",
    "platform",
    "wordpress_post_id",
)


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for field in _CONTEXT_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        return json.dumps(log_entry, default=str)


def setup_logging(
    level=None,
    format_type='standard',
    log_file=None,
    service_name='schoolchamps-engine'
):
    """
    Setup centralized logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: 'json' for structured JSON logs, 'standard' for human-readable
        log_file: Optional file path for log output
        service_name: Service name to include in logs
    """
    if level is None:
        level = os.getenv('LOG_LEVEL', 'INFO').upper()

    numeric_level = getattr(logging, level, logging.INFO)

    environment = os.getenv('ENVIRONMENT', 'development').lower()
    use_json = (format_type == 'json' or
                environment == 'production' or
                os.getenv('USE_JSON_LOGGING', '').lower() == 'true')

    if use_json:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Noisy third-party libraries
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('alembic').setLevel(logging.WARNING)
    logging.getLogger('celery').setLevel(logging.INFO)

    return logging.getLogger(service_name)


def setup_development_logging():
    return setup_logging(level='DEBUG', format_type='standard', service_name='schoolchamps-engine-dev')


def setup_production_logging(log_file=None):
    return setup_logging(level='INFO', format_type='json', log_file=log_file, service_name='schoolchamps-engine')
