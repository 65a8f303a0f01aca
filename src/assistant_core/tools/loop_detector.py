"""Detection of identical tool calls repeated within a turn."""

from __future__ import annotations

from collections import Counter, deque

from ..errors import LoopDetectedError
from ..models import ToolCall


class LoopDetector:
    """Rolling window of ``(name, argument-hash)`` pairs for one session.

    A call is rejected once more than ``max_repeats`` identical calls fall
    inside the window; with the defaults the fourth identical call fails.
    Rejected calls stay in the window so later repeats keep failing.
    """

    def __init__(self, max_repeats: int = 3, window_size: int = 12):
        self.max_repeats = max_repeats
        self._window: deque[tuple[str, str]] = deque(maxlen=window_size)

    def check(self, call: ToolCall) -> None:
        """Record ``call`` and raise if it repeats too often.

        Raises:
            LoopDetectedError: If the call exceeds the repeat threshold
        """
        signature = call.signature()
        self._window.append(signature)
        count = Counter(self._window)[signature]
        if count > self.max_repeats:
            raise LoopDetectedError(call.name, count)

    def reset(self) -> None:
        self._window.clear()

    def __len__(self) -> int:
        return len(self._window)
