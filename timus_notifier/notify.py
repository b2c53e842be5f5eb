"""
Notify module for the Timus Notifier pipeline.

This module turns a new attempt into a short Telegram message and delivers
it to the configured channel via the Bot API.

Delivery problems never interrupt a run: they are logged and reported to
the caller as a False return value.
"""

import html
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

import requests

from timus_notifier.utils import get_logger


# Module logger
logger = get_logger("notify")

# Telegram Bot API configuration
TELEGRAM_API_BASE = "https://api.telegram.org"
DEFAULT_TIMEOUT = 30  # seconds

TIMUS_BASE_URL = "https://timus.online"

# Timus prints times in its own timezone; messages use Moscow time
TIMUS_TIMEZONE = timezone(timedelta(hours=5))
DISPLAY_TIMEZONE = ZoneInfo("Europe/Moscow")

# Abbreviations used by the status page with locale=ru
SOURCE_MONTHS = ["янв", "фев", "мар", "апр", "май", "июн", "июл", "авг", "сен", "окт", "ноя", "дек"]

# Genitive month names, as in "18 октября 2024"
DISPLAY_MONTHS = [
    "января", "февраля", "марта", "апреля", "мая", "июня",
    "июля", "августа", "сентября", "октября", "ноября", "декабря",
]

TIME_PATTERN = re.compile(r"(\d{1,2}):(\d{2})(?::(\d{2}))?")
DAY_MONTH_PATTERN = re.compile(r"(\d{1,2})\s+([а-яё]{3})[а-яё]*\.?(?:\s+(\d{4}))?", re.IGNORECASE)

Attempt = Dict[str, Any]


class TelegramAPIError(Exception):
    """Custom exception for Telegram Bot API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, description: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.description = description


def parse_timus_date(date_text: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse the date cell of the status page.

    The cell reads like "21:52:33 18 окт 2024". The time defaults to
    midnight when missing. A missing year is taken from ``now``, or the
    year before when that would put the date after ``now``.

    Args:
        date_text: Text collected from the date cell.
        now: Reference time used when the year is missing.

    Returns:
        Timezone-aware datetime in the Timus timezone, or None if the text
        does not look like a date.
    """
    match = DAY_MONTH_PATTERN.search(date_text or "")
    if not match:
        return None

    day, month_name, year = match.groups()
    month_name = month_name.lower()
    if month_name not in SOURCE_MONTHS:
        return None
    month = SOURCE_MONTHS.index(month_name) + 1

    reference = now or datetime.now(TIMUS_TIMEZONE)
    year_missing = year is None
    if year_missing:
        year = reference.astimezone(TIMUS_TIMEZONE).year

    hour = minute = second = 0
    time_match = TIME_PATTERN.search(date_text)
    if time_match:
        hour = int(time_match.group(1))
        minute = int(time_match.group(2))
        second = int(time_match.group(3) or 0)

    try:
        parsed = datetime(int(year), month, int(day), hour, minute, second, tzinfo=TIMUS_TIMEZONE)
    except ValueError:
        return None

    # Without a year, a date after the reference belongs to last year
    if year_missing and parsed > reference:
        try:
            parsed = parsed.replace(year=parsed.year - 1)
        except ValueError:
            return None

    return parsed


def format_timestamp(date_text: str, now: Optional[datetime] = None) -> str:
    """
    Convert the status page date into a Moscow time display string.

    Args:
        date_text: Text collected from the date cell.
        now: Reference time used when the year is missing.

    Returns:
        String like "19:52:33, 18 октября 2024", or the stripped input if
        it could not be parsed.
    """
    parsed = parse_timus_date(date_text, now=now)
    if parsed is None:
        logger.debug(f"Could not parse date {date_text!r}, using it verbatim")
        return (date_text or "").strip()

    local = parsed.astimezone(DISPLAY_TIMEZONE)
    return f"{local:%H:%M:%S}, {local.day:02d} {DISPLAY_MONTHS[local.month - 1]} {local.year}"


def format_problem_link(attempt: Attempt) -> str:
    """Format an HTML link to the problem statement."""
    problem = attempt.get("problem", "")
    title = problem
    if attempt.get("problem_name"):
        title = f"{problem} – {attempt['problem_name']}"

    url = f"{TIMUS_BASE_URL}/problem.aspx?num={problem}"
    return f'<a href="{html.escape(url)}">{html.escape(title, quote=False)}</a>'


def format_coder_link(attempt: Attempt, author_id: str) -> str:
    """Format an HTML link to the author's status page."""
    url = f"{TIMUS_BASE_URL}/status.aspx?author={author_id}"
    return f'<a href="{html.escape(url)}">{html.escape(attempt.get("coder", ""), quote=False)}</a>'


def format_attempt_message(attempt: Attempt, author_id: str, now: Optional[datetime] = None) -> str:
    """
    Format the Telegram message announcing one attempt.

    Args:
        attempt: Parsed attempt record.
        author_id: Timus author identifier used for the coder link.
        now: Reference time used when the date has no year.

    Returns:
        Message body using Telegram's HTML parse mode.
    """
    link_problem = format_problem_link(attempt)
    link_coder = format_coder_link(attempt, author_id)
    formatted_date = format_timestamp(attempt.get("date", ""), now=now)

    if attempt.get("accepted"):
        return f"🎉 Ура! {link_coder} решил {link_problem} в {formatted_date}"

    verdict = html.escape(attempt.get("verdict", ""), quote=False)
    return f"{link_coder} попытался решить {link_problem} в {formatted_date}, но случился {verdict}"


def _redact(text: str, secret: str) -> str:
    # Bot tokens are part of the request URL and show up in exception texts
    return text.replace(secret, "***") if secret else text


def raise_for_telegram_error(response: requests.Response) -> None:
    """
    Raise TelegramAPIError for a non-success Bot API response.

    Telegram reports failures as JSON with a ``description`` field; the
    description is included when the body carries one.

    Args:
        response: Response object from the Bot API.

    Raises:
        TelegramAPIError: If the response status is not 2xx.
    """
    if 200 <= response.status_code < 300:
        return

    message = f"HTTP error! status: {response.status_code}"
    description = None

    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict) and body.get("description"):
        description = str(body["description"])
        message += f" Message: {description}"

    raise TelegramAPIError(message, status_code=response.status_code, description=description)


def send_telegram_message(
    bot_token: str,
    chat_id: str,
    message: str,
    session: Optional[requests.Session] = None,
    timeout: int = DEFAULT_TIMEOUT
) -> bool:
    """
    Send a message to a Telegram chat.

    Args:
        bot_token: Telegram bot token.
        chat_id: Target chat or channel identifier.
        message: Message body in Telegram HTML.
        session: Optional session to send the request with.
        timeout: Request timeout in seconds.

    Returns:
        True if Telegram accepted the message, False otherwise.
    """
    url = f"{TELEGRAM_API_BASE}/bot{bot_token}/sendMessage"
    payload = {
        "chat_id": chat_id,
        "text": message,
        "parse_mode": "HTML",
    }

    http = session if session is not None else requests

    try:
        response = http.post(url, data=payload, timeout=timeout)
        raise_for_telegram_error(response)

    except TelegramAPIError as e:
        logger.error(f"Error sending telegram message: {e}")
        return False

    except requests.exceptions.RequestException as e:
        logger.error(f"Error sending telegram message: {_redact(str(e), bot_token)}")
        return False

    logger.debug(f"Message delivered to chat {chat_id}")
    return True
