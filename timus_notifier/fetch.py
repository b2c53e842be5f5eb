"""
Fetch module for the Timus Notifier pipeline.

This module handles fetching the Timus status page for one author with
proper error handling, retries, and exponential backoff.
"""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from timus_notifier.utils import get_logger


# Module logger
logger = get_logger("fetch")

# Default configuration
DEFAULT_TIMEOUT = 30  # seconds
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_FACTOR = 1.0  # exponential backoff multiplier
DEFAULT_RESULT_COUNT = 10
DEFAULT_LOCALE = "ru"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

TIMUS_STATUS_URL = "https://timus.online/status.aspx"


class FetchError(Exception):
    """Raised when the status page could not be fetched."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class FetchResult:
    """
    Represents the result of fetching the status page.

    Attributes:
        source_url: The URL that was fetched.
        html_content: Raw HTML content if successful, None otherwise.
        success: Whether the fetch was successful.
        error_message: Error description if fetch failed, None otherwise.
        status_code: HTTP status code if request was made, None otherwise.
    """
    source_url: str
    html_content: Optional[str]
    success: bool
    error_message: Optional[str] = None
    status_code: Optional[int] = None


def build_status_url(
    author_id: str,
    count: int = DEFAULT_RESULT_COUNT,
    locale: str = DEFAULT_LOCALE
) -> str:
    """
    Build the status page URL listing the latest attempts of an author.

    Args:
        author_id: Timus author identifier.
        count: Number of attempts the page should list.
        locale: Page locale; the parser expects Russian month names.

    Returns:
        Absolute status page URL.
    """
    query = urlencode({"author": author_id, "count": count, "locale": locale})
    return f"{TIMUS_STATUS_URL}?{query}"


def create_session(
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
) -> requests.Session:
    """
    Create a requests session with retry configuration.

    Retries apply to idempotent requests only (GET, HEAD), so chat
    deliveries made through the same session are never repeated.

    Args:
        max_retries: Maximum number of retry attempts.
        backoff_factor: Multiplier for exponential backoff between retries.
                       Sleep time = backoff_factor * (2 ** retry_number)

    Returns:
        Configured requests.Session instance.
    """
    session = requests.Session()

    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET", "HEAD"],
        raise_on_status=False
    )

    # Mount adapter for both HTTP and HTTPS
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update({
        "User-Agent": DEFAULT_USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "ru-RU,ru;q=0.9,en;q=0.5",
        "Connection": "keep-alive",
    })

    return session


def fetch_status_page(
    author_id: str,
    session: Optional[requests.Session] = None,
    count: int = DEFAULT_RESULT_COUNT,
    timeout: int = DEFAULT_TIMEOUT
) -> FetchResult:
    """
    Fetch the status page of an author and return the result.

    Args:
        author_id: Timus author identifier.
        session: Session to use. A retrying session is created and closed
                 here when omitted.
        count: Number of attempts to request.
        timeout: Request timeout in seconds.

    Returns:
        FetchResult containing the fetch outcome.
    """
    url = build_status_url(author_id, count=count)
    owns_session = session is None
    if session is None:
        session = create_session()

    logger.debug(f"Fetching URL: {url}")

    try:
        response = session.get(url, timeout=timeout)

        if 200 <= response.status_code < 300:
            logger.info(f"Successfully fetched {url} ({len(response.text)} bytes)")
            return FetchResult(
                source_url=url,
                html_content=response.text,
                success=True,
                status_code=response.status_code
            )

        logger.warning(f"HTTP {response.status_code} for {url}")
        return FetchResult(
            source_url=url,
            html_content=None,
            success=False,
            error_message=f"HTTP {response.status_code}",
            status_code=response.status_code
        )

    except requests.exceptions.Timeout:
        logger.warning(f"Timeout fetching {url}")
        return FetchResult(
            source_url=url,
            html_content=None,
            success=False,
            error_message="Request timeout"
        )

    except requests.exceptions.ConnectionError as e:
        logger.warning(f"Connection error for {url}: {e}")
        return FetchResult(
            source_url=url,
            html_content=None,
            success=False,
            error_message=f"Connection error: {str(e)}"
        )

    except requests.exceptions.RequestException as e:
        logger.error(f"Request exception for {url}: {e}")
        return FetchResult(
            source_url=url,
            html_content=None,
            success=False,
            error_message=f"Request failed: {str(e)}"
        )

    finally:
        if owns_session:
            session.close()


def require_content(result: FetchResult) -> str:
    """
    Return the page content of a successful fetch.

    Args:
        result: Outcome of fetch_status_page.

    Returns:
        Raw HTML content.

    Raises:
        FetchError: If the fetch did not succeed.
    """
    if not result.success or result.html_content is None:
        raise FetchError(
            f"Can not fetch updates from {result.source_url}: {result.error_message}",
            status_code=result.status_code
        )
    return result.html_content
