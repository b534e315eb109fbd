"""Tests for LogManager, its logging handler and DiagnosticsManager."""

import logging

import pytest

from panelterm.terminal_tab.diagnostics import DiagnosticsManager
from panelterm.terminal_tab.log_manager import LogManager, LogManagerHandler

pytestmark = pytest.mark.anyio


class TestLogManager:
    def test_known_categories_exist(self):
        logs = LogManager()
        assert set(logs.buffers) == {"events", "errors", "debug", "output", "troubleshooting"}

    def test_multi_line_messages_are_split(self):
        logs = LogManager()
        logs.add("events", "one\ntwo")
        assert logs.text("events") == "one\ntwo"
        assert len(logs.buffers["events"]) == 2

    def test_buffers_are_bounded(self):
        logs = LogManager(max_lines=3)
        for i in range(5):
            logs.add("debug", f"line {i}")
        assert logs.text("debug") == "line 2\nline 3\nline 4"

    def test_unknown_category_is_created(self):
        logs = LogManager()
        logs.add("custom", "x")
        assert logs.text("custom") == "x"
        assert logs.text("missing") == ""

    def test_reset(self):
        logs = LogManager()
        logs.add("errors", "boom")
        logs.reset("errors")
        assert logs.text("errors") == ""


class TestHandler:
    @pytest.fixture
    def routed(self):
        logs = LogManager()
        log = logging.getLogger("panelterm.tests.handler")
        log.setLevel(logging.DEBUG)
        handler = LogManagerHandler(logs)
        log.addHandler(handler)
        yield logs, log
        log.removeHandler(handler)

    def test_levels_map_to_categories(self, routed):
        logs, log = routed
        log.warning("disk full")
        log.info("tab opened")
        log.debug("raw bytes")
        assert "disk full" in logs.text("errors")
        assert "tab opened" in logs.text("events")
        assert "raw bytes" in logs.text("debug")
        assert "tab opened" not in logs.text("errors")


class TestDiagnostics:
    @pytest.fixture
    def diagnostics(self, mux):
        logs = LogManager()
        return DiagnosticsManager(
            mux,
            logs,
            {"panelterm": "0.1.0", "textual": "1.0", "pyte": "0.8"},
            lambda: {"active_view": "terminal"},
        )

    async def test_snapshot_lists_tabs_and_commands(self, mux, diagnostics):
        tab_id = mux.create_tab()
        mux.activate_tab(tab_id)
        await mux.get_session(tab_id).lifecycle.start_task
        await mux.on_keystroke(tab_id, b"make test\r")

        snapshot = diagnostics.generate_snapshot()
        assert "panelterm: 0.1.0" in snapshot
        assert "active_view: terminal" in snapshot
        assert f"active_tab: {tab_id}" in snapshot
        assert "Console 1: state=running session_id=1 attempts=1" in snapshot
        assert "emu=80x24" in snapshot
        assert "make test (pending)" in snapshot

    async def test_snapshot_reports_start_failure(self, mux, bridge, diagnostics):
        bridge.start_failures = 10
        tab_id = mux.create_tab()
        mux.activate_tab(tab_id)
        await mux.get_session(tab_id).lifecycle.start_task

        snapshot = diagnostics.generate_snapshot()
        assert "state=failed" in snapshot
        assert "last_error: spawn failed" in snapshot

    def test_key_events_are_bounded(self, diagnostics):
        for i in range(120):
            diagnostics.record_key_event("a", "a", set())
        diagnostics.record_key_event("c", None, {"ctrl"})
        assert len(diagnostics.key_events) == 100
        assert diagnostics.key_events[-1] == "c char=None mods=ctrl"

    def test_troubleshooting_log_is_replaced(self, diagnostics):
        diagnostics.update_troubleshooting_log()
        first = len(diagnostics.log_manager.buffers["troubleshooting"])
        diagnostics.update_troubleshooting_log()
        assert len(diagnostics.log_manager.buffers["troubleshooting"]) == first

    def test_export_to_file(self, diagnostics, tmp_path):
        path = diagnostics.export_to_file(str(tmp_path / "snapshots"))
        assert path is not None
        with open(path, encoding="utf-8") as handle:
            assert handle.read().startswith("timestamp: ")

    def test_export_failure_returns_none(self, diagnostics, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        assert diagnostics.export_to_file(str(blocker)) is None
