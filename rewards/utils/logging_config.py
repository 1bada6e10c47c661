"""
Logging setup for the rewards engine.

Everything goes to stdout so gunicorn and the platform log collector pick it up.
"""
import os
from logging.config import dictConfig

_configured = False


def build_logging_config(level: str = 'INFO') -> dict:
    return {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'default': {
                'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S',
            },
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'default',
                'stream': 'ext://sys.stdout',
            },
        },
        'loggers': {
            'rewards': {'handlers': ['console'], 'level': level, 'propagate': False},
            'apscheduler': {'handlers': ['console'], 'level': 'WARNING', 'propagate': False},
            'httpx': {'handlers': ['console'], 'level': 'WARNING', 'propagate': False},
        },
        'root': {
            'level': level,
            'handlers': ['console'],
        },
    }


def setup_logging(level: str = None) -> None:
    """Apply the logging configuration once per process."""
    global _configured
    if _configured:
        return
    dictConfig(build_logging_config((level or os.getenv('LOG_LEVEL', 'INFO')).upper()))
    _configured = True
