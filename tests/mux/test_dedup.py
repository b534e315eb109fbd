"""Tests for OutputDeduplicator - suppression of re-delivered chunks."""

from panelterm.mux.dedup import OutputDeduplicator


class TestSuppression:
    def test_first_chunk_is_delivered(self, clock):
        dedup = OutputDeduplicator(window=0.1, clock=clock)
        assert dedup.should_deliver(1, b"hello") is True

    def test_identical_chunk_inside_window_is_suppressed(self, clock):
        dedup = OutputDeduplicator(window=0.1, clock=clock)
        assert dedup.should_deliver(1, b"hello")
        clock.advance(0.05)
        assert dedup.should_deliver(1, b"hello") is False

    def test_identical_chunk_after_window_is_delivered(self, clock):
        """A redrawn prompt a moment later is real output, not a duplicate."""
        dedup = OutputDeduplicator(window=0.1, clock=clock)
        assert dedup.should_deliver(1, b"$ ")
        clock.advance(0.15)
        assert dedup.should_deliver(1, b"$ ") is True

    def test_different_chunk_is_delivered(self, clock):
        dedup = OutputDeduplicator(window=0.1, clock=clock)
        assert dedup.should_deliver(1, b"a")
        assert dedup.should_deliver(1, b"b")

    def test_sessions_are_independent(self, clock):
        dedup = OutputDeduplicator(window=0.1, clock=clock)
        assert dedup.should_deliver(1, b"same")
        assert dedup.should_deliver(2, b"same")

    def test_suppressed_chunk_does_not_extend_window(self, clock):
        dedup = OutputDeduplicator(window=0.1, clock=clock)
        dedup.should_deliver(1, b"x")
        clock.advance(0.08)
        assert not dedup.should_deliver(1, b"x")
        clock.advance(0.03)
        # 0.11s after the delivered chunk
        assert dedup.should_deliver(1, b"x")

    def test_repeated_delivery_is_idempotent(self, clock):
        dedup = OutputDeduplicator(window=0.1, clock=clock)
        results = [dedup.should_deliver(7, b"chunk") for _ in range(5)]
        assert results == [True, False, False, False, False]


class TestForget:
    def test_forget_drops_record(self, clock):
        dedup = OutputDeduplicator(window=0.1, clock=clock)
        dedup.should_deliver(1, b"x")
        assert len(dedup) == 1
        dedup.forget(1)
        assert len(dedup) == 0
        assert dedup.should_deliver(1, b"x")

    def test_forget_unknown_session_is_noop(self, clock):
        dedup = OutputDeduplicator(clock=clock)
        dedup.forget(42)
        assert len(dedup) == 0
