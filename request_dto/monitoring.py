"""
Structured logging setup and Prometheus metrics.

Modules log through ``structlog.get_logger("request_dto.<module>")``. Host
applications that already configure structlog can skip
setup_structured_logging; it exists for services that do not.
"""

import logging
import logging.config
import sys
from typing import Optional

import structlog
from prometheus_client import Counter, Histogram

validation_counter = Counter(
    'request_dto_validation_total',
    'Validation attempts by schema and outcome',
    ['schema', 'outcome']
)

validation_duration = Histogram(
    'request_dto_validation_seconds',
    'Time spent compiling rules, validating and binding a schema',
    ['schema']
)


def record_validation(schema: str, outcome: str, duration: float) -> None:
    """Record one finished validation attempt."""
    validation_counter.labels(schema=schema, outcome=outcome).inc()
    validation_duration.labels(schema=schema).observe(duration)


def setup_structured_logging(level: str = "INFO", log_format: str = "json", stream: Optional[object] = None) -> structlog.stdlib.BoundLogger:
    """
    Configure structlog on top of the standard logging module.

    Args:
        level: Root log level name
        log_format: ``json`` for machine-readable output, ``console`` for
            human-readable output
        stream: Output stream for the console handler (stdout by default)

    Returns:
        Logger bound to the ``request_dto`` name
    """
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == 'console':
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'plain': {'format': '%(message)s'},
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'plain',
                'stream': stream or sys.stdout,
            },
        },
        'loggers': {
            'request_dto': {
                'handlers': ['console'],
                'level': level.upper(),
                'propagate': False,
            },
        },
    })

    logger = structlog.get_logger("request_dto")
    logger.info("Structured logging initialized", log_level=level.upper(), log_format=log_format)
    return logger
