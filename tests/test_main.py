"""
Tests for the main module.

Tests cover:
- Environment validation and configuration loading
- Full cycles against a mocked status page and Bot API
- Exit codes of the entry point
"""

import json
import os
import tempfile
import pytest
from unittest.mock import Mock, patch

from timus_notifier.compare import MemorySeenStore, SeenStoreError
from timus_notifier.fetch import FetchError
from timus_notifier.main import (
    EXIT_ENV_ERROR,
    EXIT_FAILURE,
    EXIT_SUCCESS,
    NotifierConfig,
    drop_empty_attempts,
    load_config,
    main,
    run_cycle,
    validate_environment,
)


TWO_ROW_PAGE = """
<table class="status">
<tr class="even">
<td class="id">201</td>
<td class="date"><nobr>10:00:00</nobr><br><nobr>02 янв 2024</nobr></td>
<td class="coder"><a href="author.aspx?id=1">bob</a></td>
<td class="problem"><a href="problem.aspx?num=1002">1002<span>. A+B</span></a></td>
<td class="verdict_rj">Wrong answer</td>
</tr>
<tr class="odd">
<td class="id">200</td>
<td class="date">01 янв</td>
<td class="coder"><a href="author.aspx?id=1">alice</a></td>
<td class="problem"><a href="problem.aspx?num=1001">1001<span>- Sum</span></a></td>
<td class="verdict_ac">Accepted</td>
</tr>
</table>
"""


@pytest.fixture
def env_vars():
    """Required environment variables."""
    return {
        "AUTHOR_ID": "123456",
        "BOT_TOKEN": "bot-token",
        "CHANNEL_ID": "@timus_feed",
    }


@pytest.fixture
def config():
    return NotifierConfig(author_id="123456", bot_token="bot-token", channel_id="@timus_feed")


def make_session(page=TWO_ROW_PAGE, page_status=200, post_status=200):
    """Mock session serving the status page and accepting messages."""
    page_response = Mock()
    page_response.status_code = page_status
    page_response.text = page

    post_response = Mock()
    post_response.status_code = post_status
    post_response.json.return_value = {"ok": post_status == 200, "description": "Too Many Requests"}

    session = Mock()
    session.get.return_value = page_response
    session.post.return_value = post_response
    return session


def sent_texts(session):
    return [c.kwargs["data"]["text"] for c in session.post.call_args_list]


class TestValidateEnvironment:
    """Tests for environment validation."""

    def test_all_set(self, env_vars):
        with patch.dict(os.environ, env_vars, clear=True):
            assert validate_environment() is True

    def test_missing_var(self, env_vars):
        del env_vars["BOT_TOKEN"]
        with patch.dict(os.environ, env_vars, clear=True):
            assert validate_environment() is False

    def test_blank_var(self, env_vars):
        env_vars["CHANNEL_ID"] = "   "
        with patch.dict(os.environ, env_vars, clear=True):
            assert validate_environment() is False


class TestLoadConfig:
    """Tests for configuration loading."""

    def test_defaults(self, env_vars):
        with patch.dict(os.environ, env_vars, clear=True):
            config = load_config()

        assert config.author_id == "123456"
        assert config.bot_token == "bot-token"
        assert config.channel_id == "@timus_feed"
        assert config.seen_path == "data/seen_attempts.json"
        assert config.result_count == 10
        assert config.mark_failed_as_seen is True

    def test_overrides(self, env_vars):
        env_vars.update({
            "DATA_PATH": "/tmp/seen.json",
            "RESULT_COUNT": "25",
            "MARK_FAILED_AS_SEEN": "false",
        })
        with patch.dict(os.environ, env_vars, clear=True):
            config = load_config()

        assert config.seen_path == "/tmp/seen.json"
        assert config.result_count == 25
        assert config.mark_failed_as_seen is False

    def test_missing_required(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValueError, match="AUTHOR_ID"):
                load_config()

    @pytest.mark.parametrize("value", ["ten", "0", "-3"])
    def test_invalid_count(self, env_vars, value):
        env_vars["RESULT_COUNT"] = value
        with patch.dict(os.environ, env_vars, clear=True):
            with pytest.raises(ValueError, match="RESULT_COUNT"):
                load_config()


class TestDropEmptyAttempts:
    """Tests for filtering out empty rows."""

    def test_empty_records_removed(self):
        assert drop_empty_attempts([{}, {"id": "1"}, {}]) == [{"id": "1"}]


class TestRunCycle:
    """Tests for complete notification cycles."""

    def test_two_new_attempts_oldest_first(self, config):
        session = make_session()
        store = MemorySeenStore()

        posted = run_cycle(config, store=store, session=session)

        assert posted == 2
        texts = sent_texts(session)
        assert len(texts) == 2
        assert "alice" in texts[0] and "Ура" in texts[0]
        assert "bob" in texts[1] and "Wrong answer" in texts[1]
        assert "1002 – A+B" in texts[1]
        assert "1001 – Sum" in texts[0]
        assert set(store.entries) == {"200", "201"}

    def test_messages_sent_to_channel(self, config):
        session = make_session()

        run_cycle(config, store=MemorySeenStore(), session=session)

        for c in session.post.call_args_list:
            assert c.args[0] == "https://api.telegram.org/botbot-token/sendMessage"
            assert c.kwargs["data"]["chat_id"] == "@timus_feed"
            assert c.kwargs["data"]["parse_mode"] == "HTML"

    def test_second_cycle_posts_nothing(self, config):
        store = MemorySeenStore()
        run_cycle(config, store=store, session=make_session())

        session = make_session()
        posted = run_cycle(config, store=store, session=session)

        assert posted == 0
        session.post.assert_not_called()

    def test_only_new_attempt_posted(self, config):
        store = MemorySeenStore({"200": "{}"})
        session = make_session()

        posted = run_cycle(config, store=store, session=session)

        assert posted == 1
        assert "bob" in sent_texts(session)[0]

    def test_fetch_failure_aborts(self, config):
        store = MemorySeenStore()
        session = make_session(page_status=503)

        with pytest.raises(FetchError):
            run_cycle(config, store=store, session=session)

        session.post.assert_not_called()
        assert store.entries == {}

    def test_delivery_failure_does_not_abort(self, config):
        store = MemorySeenStore()
        session = make_session(post_status=429)

        posted = run_cycle(config, store=store, session=session)

        assert session.post.call_count == 2
        assert posted == 2
        assert set(store.entries) == {"200", "201"}

    def test_delivery_failure_kept_for_retry(self, config):
        config.mark_failed_as_seen = False
        store = MemorySeenStore()

        posted = run_cycle(config, store=store, session=make_session(post_status=500))

        assert posted == 0
        assert store.entries == {}

    def test_page_without_rows(self, config):
        session = make_session(page="<html><body></body></html>")

        assert run_cycle(config, store=MemorySeenStore(), session=session) == 0
        session.post.assert_not_called()

    def test_default_store_is_json_file(self, config):
        with tempfile.TemporaryDirectory() as tmpdir:
            config.seen_path = os.path.join(tmpdir, "seen.json")

            run_cycle(config, session=make_session())

            with open(config.seen_path, "r", encoding="utf-8") as f:
                saved = json.load(f)

        assert set(saved) == {"200", "201"}
        assert json.loads(saved["200"])["coder"] == "alice"

    def test_dry_run_sends_and_writes_nothing(self, config):
        store = MemorySeenStore({"201": "{}"})
        session = make_session()

        posted = run_cycle(config, store=store, session=session, dry_run=True)

        assert posted == 1
        session.post.assert_not_called()
        assert set(store.entries) == {"201"}


class TestMain:
    """Tests for the entry point."""

    def test_missing_environment(self):
        with patch.dict(os.environ, {}, clear=True):
            assert main() == EXIT_ENV_ERROR

    def test_success(self, env_vars):
        with patch.dict(os.environ, env_vars, clear=True):
            with patch("timus_notifier.main.run_cycle", return_value=3) as mock_run:
                assert main() == EXIT_SUCCESS

        assert mock_run.call_args.kwargs["dry_run"] is False

    def test_dry_run_flag(self, env_vars):
        env_vars["DRY_RUN"] = "yes"
        with patch.dict(os.environ, env_vars, clear=True):
            with patch("timus_notifier.main.run_cycle", return_value=0) as mock_run:
                main()

        assert mock_run.call_args.kwargs["dry_run"] is True

    def test_fetch_error(self, env_vars):
        with patch.dict(os.environ, env_vars, clear=True):
            with patch("timus_notifier.main.run_cycle", side_effect=FetchError("HTTP 503")):
                assert main() == EXIT_FAILURE

    def test_store_error(self, env_vars):
        with patch.dict(os.environ, env_vars, clear=True):
            with patch("timus_notifier.main.run_cycle", side_effect=SeenStoreError("unreadable")):
                assert main() == EXIT_FAILURE

    def test_unexpected_error(self, env_vars):
        with patch.dict(os.environ, env_vars, clear=True):
            with patch("timus_notifier.main.run_cycle", side_effect=RuntimeError("boom")):
                assert main() == EXIT_FAILURE
