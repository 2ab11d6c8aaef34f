"""
Configuration for the request DTO extension.

Settings are read from the environment (``.env`` files are loaded through
python-dotenv) into per-environment classes. The Flask extension copies them
into ``app.config`` as defaults, so an application can still override any key
in its own configuration.
"""

import os
from typing import Any, Dict, List, Optional, Type

import structlog
from dotenv import load_dotenv

load_dotenv()

logger = structlog.get_logger("request_dto.config")

CONFIG_PREFIX = "REQUEST_DTO_"


def env_bool(name: str, default: bool) -> bool:
    """Read a boolean environment variable (1/true/yes/on are truthy)."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class BaseConfig:
    """Settings shared by every environment."""

    # Failure location used when the client's previous location is unknown
    REQUEST_DTO_FALLBACK_URL = os.getenv('REQUEST_DTO_FALLBACK_URL', '/')

    # Build absolute redirect URLs
    REQUEST_DTO_EXTERNAL_URLS = env_bool('REQUEST_DTO_EXTERNAL_URLS', False)

    # Response codes of the ValidationFailure error handler
    REQUEST_DTO_JSON_ERROR_STATUS = int(os.getenv('REQUEST_DTO_JSON_ERROR_STATUS', '422'))
    REQUEST_DTO_REDIRECT_STATUS = int(os.getenv('REQUEST_DTO_REDIRECT_STATUS', '302'))

    # Remember the last GET page in the session for previous()
    REQUEST_DTO_TRACK_PREVIOUS_URL = env_bool('REQUEST_DTO_TRACK_PREVIOUS_URL', True)

    REQUEST_DTO_LOG_LEVEL = os.getenv('REQUEST_DTO_LOG_LEVEL', 'INFO').upper()
    REQUEST_DTO_LOG_FORMAT = os.getenv('REQUEST_DTO_LOG_FORMAT', 'json').lower()

    def as_dict(self) -> Dict[str, Any]:
        """Return every REQUEST_DTO_* setting of this configuration."""
        return {
            name: getattr(self, name)
            for name in dir(self)
            if name.startswith(CONFIG_PREFIX)
        }


class DevelopmentConfig(BaseConfig):
    """Local development: readable console logs."""

    REQUEST_DTO_LOG_LEVEL = os.getenv('REQUEST_DTO_LOG_LEVEL', 'DEBUG').upper()
    REQUEST_DTO_LOG_FORMAT = os.getenv('REQUEST_DTO_LOG_FORMAT', 'console').lower()


class TestingConfig(BaseConfig):
    """Test runs: deterministic values, no session bookkeeping."""

    REQUEST_DTO_FALLBACK_URL = '/'
    REQUEST_DTO_EXTERNAL_URLS = False
    REQUEST_DTO_TRACK_PREVIOUS_URL = False
    REQUEST_DTO_LOG_LEVEL = 'WARNING'
    REQUEST_DTO_LOG_FORMAT = 'console'


class ProductionConfig(BaseConfig):
    """Production: JSON logs."""

    REQUEST_DTO_LOG_FORMAT = 'json'


config_map: Dict[str, Type[BaseConfig]] = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}

SUPPORTED_LOG_FORMATS = ('json', 'console')
SUPPORTED_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


def get_config(environment: Optional[str] = None) -> Type[BaseConfig]:
    """
    Get the configuration class for an environment.

    Args:
        environment: Environment name (defaults to FLASK_ENV, then production)

    Returns:
        Configuration class for the environment

    Raises:
        ValueError: If the environment is not supported
    """
    if environment is None:
        environment = os.getenv('FLASK_ENV', 'production')

    environment = environment.lower()
    if environment not in config_map:
        raise ValueError(
            f"Unsupported environment '{environment}'. "
            f"Supported environments: {list(config_map.keys())}"
        )

    return config_map[environment]


def validate_configuration(config: BaseConfig) -> List[str]:
    """
    Check a configuration for inconsistent values.

    Args:
        config: Configuration instance to check

    Returns:
        List of issues (empty if valid)
    """
    issues = []

    if not config.REQUEST_DTO_FALLBACK_URL:
        issues.append("REQUEST_DTO_FALLBACK_URL must not be empty")

    if not 400 <= config.REQUEST_DTO_JSON_ERROR_STATUS < 500:
        issues.append("REQUEST_DTO_JSON_ERROR_STATUS should be a 4xx status code")

    if config.REQUEST_DTO_REDIRECT_STATUS not in (301, 302, 303, 307, 308):
        issues.append("REQUEST_DTO_REDIRECT_STATUS must be a redirect status code")

    if config.REQUEST_DTO_LOG_FORMAT not in SUPPORTED_LOG_FORMATS:
        issues.append(f"REQUEST_DTO_LOG_FORMAT must be one of {SUPPORTED_LOG_FORMATS}")

    if config.REQUEST_DTO_LOG_LEVEL not in SUPPORTED_LOG_LEVELS:
        issues.append(f"REQUEST_DTO_LOG_LEVEL must be one of {SUPPORTED_LOG_LEVELS}")

    if issues:
        logger.warning(
            "Configuration validation found issues",
            config_class=config.__class__.__name__,
            issues=issues
        )

    return issues
