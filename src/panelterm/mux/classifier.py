"""Optional command outcome classification from raw shell output.

Nothing here is wired into dispatch by default. Prompt and error text are
shell- and locale-specific, so any classifier is a best-effort enrichment
that a deployment opts into via ``SessionMultiplexer(classifier=...)``.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, Optional, Protocol

from .command_buffer import CommandStatus


class OutputClassifier(Protocol):
    def classify(self, tab_id: int, chunk: str) -> Optional[CommandStatus]:
        """Return a final status once the chunk reveals one, else None."""
        ...


_ANSI = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b\][^\x07]*(?:\x07|\x1b\\)")

# PowerShell "PS C:\Users>" or a POSIX prompt ending in "$ " / "# "
DEFAULT_PROMPTS = (
    re.compile(r"PS [^\r\n>]*>\s*$"),
    re.compile(r"[$#] ?$"),
)

DEFAULT_ERROR_MARKERS = (
    "command not found",
    "is not recognized",
    "no such file or directory",
    "permission denied",
    "error:",
)


class PromptClassifier:
    """Marks a command finished when the next prompt appears.

    The outcome is FAILED if any error marker showed up in the output since
    the previous prompt, SUCCEEDED otherwise.
    """

    def __init__(
        self,
        prompts: Iterable[re.Pattern] = DEFAULT_PROMPTS,
        error_markers: Iterable[str] = DEFAULT_ERROR_MARKERS,
    ):
        self.prompts = tuple(prompts)
        self.error_markers = tuple(marker.lower() for marker in error_markers)
        self._saw_error: Dict[int, bool] = {}

    def classify(self, tab_id: int, chunk: str) -> Optional[CommandStatus]:
        text = _ANSI.sub("", chunk)
        lowered = text.lower()
        if any(marker in lowered for marker in self.error_markers):
            self._saw_error[tab_id] = True

        tail = text.rstrip("\r\n").rsplit("\n", 1)[-1]
        if not any(pattern.search(tail) for pattern in self.prompts):
            return None

        failed = self._saw_error.pop(tab_id, False)
        return CommandStatus.FAILED if failed else CommandStatus.SUCCEEDED

    def forget(self, tab_id: int) -> None:
        self._saw_error.pop(tab_id, None)
