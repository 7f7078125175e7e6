"""Reconciliation of the rendered message list.

Every resync hands the full canonical history to MessageTimeline.apply();
the timeline never merges partial events. It keeps only what is needed to
decide side effects against the previous render:

- rendered_count: length of the list last rendered
- settled: the initial jump to the bottom has happened
- typing: the counterpart typing indicator (soft state)
"""

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from companion.schemas.chat import MessageOut

# Seconds after which a typing indicator with no stop signal is cleared
DEFAULT_TYPING_TIMEOUT_S = 30.0


class ScrollAction(str, Enum):
    NONE = "none"
    INSTANT = "instant"
    SMOOTH = "smooth"


@dataclass
class TimelineUpdate:
    messages: list[MessageOut]
    scroll: ScrollAction = ScrollAction.NONE
    new_ai_message: MessageOut | None = None
    added: list[MessageOut] = field(default_factory=list)


def order_messages(messages: Iterable[MessageOut]) -> list[MessageOut]:
    """Deduplicate by id and sort by (created_at, seq)."""
    by_id: dict = {}
    for message in messages:
        by_id.setdefault(message.id, message)
    return sorted(by_id.values(), key=lambda m: (m.created_at, m.seq))


class MessageTimeline:
    def __init__(
        self,
        *,
        typing_timeout_s: float = DEFAULT_TYPING_TIMEOUT_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.messages: list[MessageOut] = []
        self.rendered_count = 0
        self.settled = False
        self._has_rendered = False
        self._typing_timeout_s = typing_timeout_s
        self._clock = clock
        self._typing_since: float | None = None

    def apply(self, messages: Iterable[MessageOut]) -> TimelineUpdate:
        """Replace the rendered list with a fresh canonical read.

        new_ai_message is reported only when the list grew since the
        previous render and its newest message came from the AI. The very
        first render is history, not news, and never reports one.
        """
        ordered = order_messages(messages)
        known = {m.id for m in self.messages}
        added = [m for m in ordered if m.id not in known]
        grew = len(ordered) > self.rendered_count

        new_ai_message = None
        if self._has_rendered and grew and ordered[-1].sender_type == "ai":
            new_ai_message = ordered[-1]
            self.set_typing(False)

        scroll = ScrollAction.NONE
        if not self.settled:
            if ordered:
                scroll = ScrollAction.INSTANT
                self.settled = True
        elif grew:
            scroll = ScrollAction.SMOOTH

        self.messages = ordered
        self.rendered_count = len(ordered)
        self._has_rendered = True
        return TimelineUpdate(
            messages=ordered,
            scroll=scroll,
            new_ai_message=new_ai_message,
            added=added,
        )

    # ------------------------------------------------------------------
    # Typing indicator
    # ------------------------------------------------------------------

    def set_typing(self, is_typing: bool) -> None:
        self._typing_since = self._clock() if is_typing else None

    @property
    def typing(self) -> bool:
        if self._typing_since is None:
            return False
        if self._clock() - self._typing_since >= self._typing_timeout_s:
            self._typing_since = None
            return False
        return True

    @property
    def typing_timeout_s(self) -> float:
        return self._typing_timeout_s
