"""Tests for CommandBuffer and CommandHistory.

The buffer rebuilds the typed line from raw keystroke chunks; it must
match what a user sees on a plain shell prompt for the common editing
keys, and ignore cursor-movement escape sequences entirely.
"""

from panelterm.mux.command_buffer import (
    CommandBuffer,
    CommandHistory,
    CommandHistoryEntry,
    CommandStatus,
    new_entry,
)


class TestCommandBuffer:
    def test_enter_completes_command(self):
        buf = CommandBuffer()
        assert buf.feed(b"ls\r") == ["ls"]
        assert buf.text == ""

    def test_keystrokes_one_at_a_time(self):
        buf = CommandBuffer()
        for ch in "pwd":
            assert buf.feed(ch.encode()) == []
        assert buf.text == "pwd"
        assert buf.feed(b"\r") == ["pwd"]

    def test_backspace_removes_last_char(self):
        buf = CommandBuffer()
        assert buf.feed(b"lt\x7fs\r") == ["ls"]

    def test_ctrl_h_backspace(self):
        buf = CommandBuffer()
        assert buf.feed(b"cdd\x08 /tmp\r") == ["cd /tmp"]

    def test_backspace_on_empty_buffer(self):
        buf = CommandBuffer()
        assert buf.feed(b"\x7f\x7fx\r") == ["x"]

    def test_empty_and_blank_lines_are_not_commands(self):
        buf = CommandBuffer()
        assert buf.feed(b"\r") == []
        assert buf.feed(b"   \r") == []

    def test_command_is_trimmed(self):
        buf = CommandBuffer()
        assert buf.feed(b"  git status  \r") == ["git status"]

    def test_arrow_key_chunk_leaves_line_unchanged(self):
        buf = CommandBuffer()
        buf.feed(b"ec")
        assert buf.feed(b"\x1b[D") == []
        assert buf.text == "ec"
        assert buf.feed(b"ho\r") == ["echo"]

    def test_bracketed_paste_completes_command(self):
        buf = CommandBuffer()
        assert buf.feed(b"\x1b[200~pwd\r\x1b[201~") == ["pwd"]
        assert buf.text == ""

    def test_bracketed_paste_extends_typed_prefix(self):
        buf = CommandBuffer()
        buf.feed(b"git ")
        assert buf.feed(b"\x1b[200~status\x1b[201~") == []
        assert buf.text == "git status"
        assert buf.feed(b"\r") == ["git status"]

    def test_embedded_escape_sequence_is_skipped(self):
        buf = CommandBuffer()
        assert buf.feed(b"ab\x1b[Ac\r") == ["abc"]

    def test_osc_sequence_is_skipped(self):
        buf = CommandBuffer()
        assert buf.feed(b"a\x1b]0;title\x07b\r") == ["ab"]

    def test_ctrl_c_discards_line(self):
        buf = CommandBuffer()
        buf.feed(b"rm -rf build")
        buf.feed(b"\x03")
        assert buf.text == ""
        assert buf.feed(b"ls\r") == ["ls"]

    def test_ctrl_u_discards_line(self):
        buf = CommandBuffer()
        assert buf.feed(b"oops\x15make\r") == ["make"]

    def test_other_control_chars_are_dropped(self):
        buf = CommandBuffer()
        assert buf.feed(b"l\ts\r") == ["ls"]

    def test_pasted_multi_line_chunk(self):
        buf = CommandBuffer()
        assert buf.feed(b"cd /tmp\rls -la\rpart") == ["cd /tmp", "ls -la"]
        assert buf.text == "part"

    def test_str_input_and_unicode(self):
        buf = CommandBuffer()
        assert buf.feed("echo héllo\r") == ["echo héllo"]

    def test_reset(self):
        buf = CommandBuffer()
        buf.feed(b"abc")
        buf.reset()
        assert buf.text == ""


class TestCommandHistory:
    def test_bounded_fifo_keeps_newest(self):
        history = CommandHistory(limit=100)
        for i in range(150):
            history.append(new_entry(f"cmd{i}"))
        assert len(history) == 100
        assert history[0].command == "cmd50"
        assert history[-1].command == "cmd149"

    def test_commands_in_order(self):
        history = CommandHistory(limit=3)
        for cmd in ("a", "b", "c", "d"):
            history.append(new_entry(cmd))
        assert history.commands() == ["b", "c", "d"]

    def test_latest_pending(self):
        history = CommandHistory()
        assert history.latest_pending() is None
        entry = new_entry("make")
        history.append(entry)
        assert history.latest_pending() is entry
        entry.status = CommandStatus.SUCCEEDED
        assert history.latest_pending() is None

    def test_new_entry_defaults(self):
        entry = new_entry("ls")
        assert entry.status is CommandStatus.PENDING
        assert entry.exit_code is None
        assert entry.output == ""
        # "%d %b %H:%M:%S", e.g. "07 Mar 14:02:11"
        assert len(entry.timestamp.split()) == 3


class TestEntryOutput:
    def test_output_tail_is_bounded(self):
        entry = CommandHistoryEntry(command="yes", timestamp="now")
        entry.append_output("a" * 10, limit=8)
        entry.append_output("bcd", limit=8)
        assert entry.output == "aaaaabcd"

    def test_zero_limit_keeps_nothing(self):
        entry = CommandHistoryEntry(command="yes", timestamp="now")
        entry.append_output("data", limit=0)
        assert entry.output == ""
