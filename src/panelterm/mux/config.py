"""Timing and bound settings for the session multiplexer."""

from __future__ import annotations

from pydantic import BaseModel, Field


class MultiplexerConfig(BaseModel):
    """Tunable constants for session startup, dedup and history.

    Defaults match the terminal tab's production behaviour; tests shrink
    the timers so retry paths run in milliseconds.
    """

    start_timeout: float = Field(15.0, gt=0, description="Seconds one start_process attempt may take")
    start_attempts: int = Field(3, ge=1, description="Consecutive start attempts before FAILED")
    retry_backoff: float = Field(2.0, ge=0, description="Seconds between start attempts")
    dedup_window: float = Field(0.1, ge=0, description="Seconds identical output is suppressed")
    history_limit: int = Field(100, ge=1, description="Command history entries kept per session")
    banner_timeout: float = Field(3.0, gt=0, description="Seconds a transient error stays visible")
    restart_settle: float = Field(0.2, ge=0, description="Pause between close and start on restart")
    output_tail: int = Field(4096, ge=0, description="Output characters kept per history entry")
