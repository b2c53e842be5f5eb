#!/usr/bin/env python3
"""
Main orchestration module for the Timus Notifier pipeline.

This module runs one notification cycle:
fetch → parse → order → compare → notify

It is meant to be started by an external scheduler (cron, a CI schedule)
that never runs two cycles at the same time; the seen-set is not locked.
"""

import sys
import os
from dataclasses import dataclass
from typing import List, Optional

import requests

from timus_notifier.utils import setup_logging, get_logger, get_env_var, get_env_flag
from timus_notifier.fetch import (
    DEFAULT_RESULT_COUNT,
    FetchError,
    create_session,
    fetch_status_page,
    require_content,
)
from timus_notifier.parse import Attempt, parse_status_table
from timus_notifier.compare import (
    DEFAULT_SEEN_PATH,
    JsonSeenStore,
    MemorySeenStore,
    SeenStore,
    SeenStoreError,
    announce_new_attempts,
    in_chronological_order,
)
from timus_notifier.notify import format_attempt_message, send_telegram_message


# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_ENV_ERROR = 2

REQUIRED_ENV_VARS = ["AUTHOR_ID", "BOT_TOKEN", "CHANNEL_ID"]


@dataclass
class NotifierConfig:
    """Settings for one notification cycle."""
    author_id: str
    bot_token: str
    channel_id: str
    seen_path: str = DEFAULT_SEEN_PATH
    result_count: int = DEFAULT_RESULT_COUNT
    mark_failed_as_seen: bool = True


def validate_environment() -> bool:
    """
    Validate that required environment variables are set.

    Returns:
        True if all required variables are set, False otherwise.
    """
    logger = get_logger("main")

    missing_vars = []

    for var in REQUIRED_ENV_VARS:
        value = os.environ.get(var)
        if not value or value.strip() == "":
            missing_vars.append(var)

    if missing_vars:
        logger.error(f"Missing required environment variables: {', '.join(missing_vars)}")
        return False

    logger.debug("Environment validation passed")
    return True


def load_config() -> NotifierConfig:
    """
    Build the cycle configuration from environment variables.

    Returns:
        NotifierConfig instance.

    Raises:
        ValueError: If a required variable is missing or RESULT_COUNT is
                    not a positive integer.
    """
    author_id = get_env_var("AUTHOR_ID", required=True)
    bot_token = get_env_var("BOT_TOKEN", required=True)
    channel_id = get_env_var("CHANNEL_ID", required=True)
    assert author_id is not None and bot_token is not None and channel_id is not None

    count_str = get_env_var("RESULT_COUNT", required=False, default=str(DEFAULT_RESULT_COUNT))
    try:
        result_count = int(count_str or DEFAULT_RESULT_COUNT)
    except ValueError:
        raise ValueError(f"RESULT_COUNT must be a valid integer, got: {count_str}")
    if result_count <= 0:
        raise ValueError(f"RESULT_COUNT must be positive, got: {result_count}")

    return NotifierConfig(
        author_id=author_id,
        bot_token=bot_token,
        channel_id=channel_id,
        seen_path=get_env_var("DATA_PATH", required=False, default=DEFAULT_SEEN_PATH) or DEFAULT_SEEN_PATH,
        result_count=result_count,
        mark_failed_as_seen=get_env_flag("MARK_FAILED_AS_SEEN", default=True),
    )


def drop_empty_attempts(attempts: List[Attempt]) -> List[Attempt]:
    """Remove records of rows that had no usable cells at all."""
    return [attempt for attempt in attempts if attempt]


class _DryRunStore(MemorySeenStore):
    """Reads through to a real store, keeps writes in memory."""

    def __init__(self, backing: SeenStore):
        super().__init__()
        self.backing = backing

    def get(self, key: str) -> Optional[str]:
        value = super().get(key)
        if value is not None:
            return value
        return self.backing.get(key)


def run_cycle(
    config: NotifierConfig,
    store: Optional[SeenStore] = None,
    session: Optional[requests.Session] = None,
    dry_run: bool = False
) -> int:
    """
    Execute one fetch → parse → compare → notify cycle.

    Args:
        config: Cycle configuration.
        store: Seen-set to use. Defaults to the JSON file at config.seen_path.
        session: HTTP session for the fetch and the deliveries.
        dry_run: If True, log messages instead of sending them and leave
                 the persisted seen-set untouched.

    Returns:
        Number of attempts announced in this cycle.

    Raises:
        FetchError: If the status page could not be fetched.
        SeenStoreError: If the seen-set cannot be read or written.
    """
    logger = get_logger("main")

    if store is None:
        store = JsonSeenStore(config.seen_path)
    if dry_run:
        # Writes stay in memory during a dry run
        store = _DryRunStore(store)

    owns_session = session is None
    if session is None:
        session = create_session()

    try:
        logger.info(f"Fetching status page for author {config.author_id}...")
        result = fetch_status_page(config.author_id, session=session, count=config.result_count)
        html_content = require_content(result)

        attempts = drop_empty_attempts(parse_status_table(html_content))
        logger.info(f"Parsed {len(attempts)} attempt(s)")

        def announce(attempt: Attempt) -> bool:
            message = format_attempt_message(attempt, config.author_id)
            if dry_run:
                logger.info(f"[DRY RUN] Would send: {message}")
                return True
            return send_telegram_message(config.bot_token, config.channel_id, message, session=session)

        posted = announce_new_attempts(
            in_chronological_order(attempts),
            store,
            announce,
            mark_failed_as_seen=config.mark_failed_as_seen,
        )
    finally:
        if owns_session:
            session.close()

    logger.info(f"Posted {posted} messages")
    return posted


def main() -> int:
    """
    Main entry point for the Timus Notifier pipeline.

    Sets up logging and runs one cycle with proper error handling.

    Returns:
        Exit code for the process.
    """
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()

    setup_logging(log_level)
    logger = get_logger("main")

    dry_run = get_env_flag("DRY_RUN")

    if dry_run:
        logger.info("Running in DRY RUN mode - notifications will be skipped")

    if not validate_environment():
        return EXIT_ENV_ERROR

    try:
        config = load_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_ENV_ERROR

    try:
        run_cycle(config, dry_run=dry_run)
        return EXIT_SUCCESS

    except FetchError as e:
        logger.error(f"Cycle aborted: {e}")
        return EXIT_FAILURE

    except SeenStoreError as e:
        logger.error(f"Seen-set failure: {e}")
        return EXIT_FAILURE

    except KeyboardInterrupt:
        logger.warning("Cycle interrupted by user")
        return EXIT_FAILURE

    except Exception as e:
        logger.exception(f"Unexpected error in cycle: {e}")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
