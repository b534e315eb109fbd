"""Tests for ErrorBanner and PromptClassifier."""

import asyncio

import pytest

from panelterm.mux import CommandStatus, ErrorBanner, MultiplexerConfig, PromptClassifier


class TestErrorBanner:
    @pytest.mark.anyio
    async def test_transient_message_clears_itself(self):
        banner = ErrorBanner(timeout=0.02)
        seen = []
        banner.add_listener(seen.append)
        banner.show("Failed to send input")
        assert banner.message == "Failed to send input"
        await asyncio.sleep(0.05)
        assert banner.message is None
        assert seen == ["Failed to send input", None]

    @pytest.mark.anyio
    async def test_persistent_message_stays(self):
        banner = ErrorBanner(timeout=0.02)
        banner.show("start failed", persistent=True)
        await asyncio.sleep(0.05)
        assert banner.message == "start failed"
        banner.clear()
        assert banner.message is None
        assert not banner.persistent

    @pytest.mark.anyio
    async def test_new_message_restarts_timer(self):
        banner = ErrorBanner(timeout=0.1)
        banner.show("first")
        await asyncio.sleep(0.06)
        banner.show("second")
        await asyncio.sleep(0.06)
        assert banner.message == "second"

    def test_show_without_running_loop(self):
        banner = ErrorBanner()
        banner.show("no loop yet")
        assert banner.message == "no loop yet"

    def test_clear_when_empty_does_not_notify(self):
        banner = ErrorBanner()
        seen = []
        banner.add_listener(seen.append)
        banner.clear()
        assert seen == []


class TestPromptClassifier:
    def test_posix_prompt_after_clean_output(self):
        classifier = PromptClassifier()
        assert classifier.classify(1, "total 0\r\n") is None
        assert classifier.classify(1, "\x1b[32muser@box\x1b[0m:~$ ") is CommandStatus.SUCCEEDED

    def test_powershell_prompt(self):
        classifier = PromptClassifier()
        assert classifier.classify(1, "PS C:\\Users\\me> ") is CommandStatus.SUCCEEDED

    def test_error_marker_before_prompt(self):
        classifier = PromptClassifier()
        classifier.classify(1, "'foo' is not recognized as an internal or external command\r\n")
        assert classifier.classify(1, "PS C:\\> ") is CommandStatus.FAILED
        # The error is consumed by the prompt that reported it
        assert classifier.classify(1, "PS C:\\> ") is CommandStatus.SUCCEEDED

    def test_tabs_are_tracked_separately(self):
        classifier = PromptClassifier()
        classifier.classify(1, "bash: x: command not found\n")
        assert classifier.classify(2, "$ ") is CommandStatus.SUCCEEDED
        assert classifier.classify(1, "$ ") is CommandStatus.FAILED

    def test_forget(self):
        classifier = PromptClassifier()
        classifier.classify(1, "permission denied\n")
        classifier.forget(1)
        assert classifier.classify(1, "$ ") is CommandStatus.SUCCEEDED


class TestConfig:
    def test_defaults(self):
        config = MultiplexerConfig()
        assert config.start_timeout == 15.0
        assert config.start_attempts == 3
        assert config.retry_backoff == 2.0
        assert config.dedup_window == 0.1
        assert config.history_limit == 100
        assert config.banner_timeout == 3.0

    def test_validation(self):
        with pytest.raises(ValueError):
            MultiplexerConfig(start_attempts=0)
