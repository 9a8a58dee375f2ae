"""Environment variable configuration.

Values found in a ``.env`` file or the process environment take priority over
``config.json``. Only the settings that are sensitive or deployment specific
are read from the environment.
"""
import os
import logging
from typing import Optional, Dict, Union
from pathlib import Path
from dataclasses import dataclass

logger = logging.getLogger(__name__)

TRUE_VALUES = ('true', '1', 'yes', 'on')


@dataclass(frozen=True)
class EnvironmentConfig:
    """Immutable environment configuration object."""

    gemini_api_key: Optional[str]
    gemini_model: Optional[str]
    gemini_timeout: Optional[int]
    demo_mode: Optional[bool]
    debug_logging: bool

    @property
    def is_api_key_configured(self) -> bool:
        return bool(self.gemini_api_key)


class EnvironmentError(Exception):
    """Custom exception for environment configuration errors."""
    pass


def validate_numeric_range(value: Union[str, int, float],
                           min_val: Optional[Union[int, float]] = None,
                           max_val: Optional[Union[int, float]] = None,
                           value_type: type = int) -> Union[int, float]:
    """Validate numeric value within specified range.

    Raises:
        EnvironmentError: If validation fails
    """
    try:
        numeric_value = value_type(value)
    except (ValueError, TypeError):
        raise EnvironmentError(f"Invalid {value_type.__name__} value: {value}")

    if min_val is not None and numeric_value < min_val:
        raise EnvironmentError(f"Value {numeric_value} below minimum {min_val}")

    if max_val is not None and numeric_value > max_val:
        raise EnvironmentError(f"Value {numeric_value} above maximum {max_val}")

    return numeric_value


def load_env_file(env_path: Optional[str] = None) -> Dict[str, str]:
    """Load KEY=VALUE pairs from a .env file (defaults to ./.env)."""
    if env_path is None:
        env_path = ".env"

    env_vars: Dict[str, str] = {}
    env_file_path = Path(env_path)

    if not env_file_path.exists():
        logger.info(f"Environment file {env_path} not found, using system environment only")
        return env_vars

    try:
        with open(env_file_path, 'r', encoding='utf-8') as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()

                if not line or line.startswith('#'):
                    continue

                if '=' in line:
                    key, value = line.split('=', 1)
                    value = value.strip()

                    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                        value = value[1:-1]

                    env_vars[key.strip()] = value
                else:
                    logger.warning(f"Invalid line format in {env_path}:{line_num}: {line}")

        logger.info(f"Loaded {len(env_vars)} variables from {env_path}")

    except OSError as e:
        logger.error(f"Error reading environment file {env_path}: {e}")

    return env_vars


def get_env_var(key: str, default: Optional[str] = None,
                env_vars: Optional[Dict[str, str]] = None) -> Optional[str]:
    """Get a variable from the loaded .env values, then the process environment."""
    if env_vars and key in env_vars:
        return env_vars[key]
    return os.getenv(key, default)


def load_environment_config(env_file_path: Optional[str] = None) -> EnvironmentConfig:
    """Load and validate environment configuration.

    Raises:
        EnvironmentError: If a provided value is invalid
    """
    env_vars = load_env_file(env_file_path)

    api_key = get_env_var("GEMINI_API_KEY", env_vars=env_vars) or None
    model = get_env_var("GEMINI_MODEL", env_vars=env_vars) or None

    timeout = None
    timeout_str = get_env_var("GEMINI_TIMEOUT", env_vars=env_vars)
    if timeout_str:
        timeout = validate_numeric_range(timeout_str, 5, 300, int)

    demo_mode = None
    demo_str = get_env_var("PURESCAN_DEMO_MODE", env_vars=env_vars)
    if demo_str:
        demo_mode = demo_str.lower() in TRUE_VALUES

    debug_str = get_env_var("DEBUG_LOGGING", "false", env_vars=env_vars)

    config = EnvironmentConfig(
        gemini_api_key=api_key,
        gemini_model=model,
        gemini_timeout=timeout,
        demo_mode=demo_mode,
        debug_logging=debug_str.lower() in TRUE_VALUES,
    )

    if config.is_api_key_configured:
        logger.info("Environment configuration loaded - AI analysis enabled")
    else:
        logger.info("Environment configuration loaded - Configure GEMINI_API_KEY to enable AI analysis")

    return config


__all__ = [
    "EnvironmentConfig",
    "EnvironmentError",
    "load_environment_config",
    "load_env_file",
    "get_env_var",
    "validate_numeric_range",
]
