"""Configuration and logging setup for the partner charts reconciler."""

import logging
import os
import sys


def setup_logging(level: str | None = None) -> None:
    """Set up logging for command line runs.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to the
            LOG_LEVEL environment variable, or INFO. A non-empty DEBUG
            environment variable forces DEBUG.
    """
    log_level = level or os.getenv(ENV_LOG_LEVEL, "INFO")
    if os.getenv(ENV_DEBUG):
        log_level = "DEBUG"

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Third party libraries are noisy at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("git").setLevel(logging.WARNING)


def get_env_var(name: str, default: str | None = None, required: bool = False) -> str:
    """Get environment variable with optional default and validation.

    Args:
        name: Environment variable name
        default: Default value if not set
        required: Whether the variable is required

    Returns:
        Environment variable value

    Raises:
        ValueError: If required variable is not set
    """
    value = os.getenv(name, default)

    if required and not value:
        raise ValueError(f"Required environment variable {name} is not set")

    return value or ""


# Environment variable names
ENV_PACKAGE = "PACKAGE"
ENV_LOG_LEVEL = "LOG_LEVEL"
ENV_DEBUG = "DEBUG"
ENV_GITHUB_TOKEN = "GITHUB_TOKEN"
