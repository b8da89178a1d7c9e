"""Unit tests for the long-running poller."""

import os
from unittest.mock import Mock, patch

from patchnotes_bot.exceptions import PublishFailed
from patchnotes_bot.main import run
from patchnotes_bot.models import CycleResult


def _config(startup_message: str = "") -> Mock:
    config = Mock()
    config.log_level = "INFO"
    config.poll_seconds = 300
    config.force_post_on_boot = True
    config.get_message_config.return_value.startup_message = startup_message
    return config


class TestPollerUnit:
    """Unit tests for run()."""

    def test_missing_configuration_exits_nonzero(self, tmp_path):
        with patch.dict(os.environ, {"FEEDS_FILE": str(tmp_path / "none.json")}, clear=True):
            assert run(max_cycles=1) == 1

    @patch("patchnotes_bot.main.time.sleep")
    @patch("patchnotes_bot.main.create_runner")
    @patch("patchnotes_bot.main.DiscordClient")
    @patch("patchnotes_bot.main.resolve_bot_token", return_value="token")
    @patch("patchnotes_bot.main.Config")
    def test_cycles_then_sleeps(
        self, mock_config_class, mock_token, mock_client_class, mock_create_runner, mock_sleep
    ):
        mock_config_class.return_value = _config()
        runner = mock_create_runner.return_value
        runner.run_cycle.return_value = CycleResult(outcome="nothing_new", state="idle")

        assert run(max_cycles=2) == 0

        assert runner.run_cycle.call_count == 2
        mock_sleep.assert_called_once_with(300)
        assert mock_create_runner.call_args.kwargs["force"] is True
        assert mock_create_runner.call_args.kwargs["client"] is mock_client_class.return_value

    @patch("patchnotes_bot.main.time.sleep")
    @patch("patchnotes_bot.main.Publisher")
    @patch("patchnotes_bot.main.create_runner")
    @patch("patchnotes_bot.main.DiscordClient")
    @patch("patchnotes_bot.main.resolve_bot_token", return_value="token")
    @patch("patchnotes_bot.main.Config")
    def test_startup_message_failure_is_not_fatal(
        self,
        mock_config_class,
        mock_token,
        mock_client_class,
        mock_create_runner,
        mock_publisher_class,
        mock_sleep,
    ):
        mock_config_class.return_value = _config(startup_message="Bot online")
        mock_publisher_class.return_value.publish.side_effect = PublishFailed("403", code=403)
        runner = mock_create_runner.return_value
        runner.run_cycle.return_value = CycleResult(outcome="nothing_new", state="idle")

        assert run(max_cycles=1) == 0

        mock_publisher_class.return_value.publish.assert_called_once_with(["Bot online"], [])
        runner.run_cycle.assert_called_once()

    @patch("patchnotes_bot.main.create_runner")
    @patch("patchnotes_bot.main.DiscordClient")
    @patch("patchnotes_bot.main.resolve_bot_token", return_value="token")
    @patch("patchnotes_bot.main.Config")
    def test_keyboard_interrupt_stops_cleanly(
        self, mock_config_class, mock_token, mock_client_class, mock_create_runner
    ):
        mock_config_class.return_value = _config()
        mock_create_runner.return_value.run_cycle.side_effect = KeyboardInterrupt

        assert run() == 0
