"""Shared HTTP session setup."""

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

DEFAULT_TIMEOUT = 30


def create_session(max_retries: int = 3) -> requests.Session:
    """Create a requests session with retry configuration.

    Args:
        max_retries: Maximum number of retries per request

    Returns:
        Configured requests session with exponential backoff retry
    """
    session = requests.Session()

    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=1,  # 1, 2, 4 seconds
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"],
    )

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    return session
