"""In-memory broker that also records every publish for assertions."""

from typing import Any

from companion.realtime import InMemoryBroker


class RecordingBroker(InMemoryBroker):
    def __init__(self):
        super().__init__()
        self.published: list[tuple[str, dict[str, Any]]] = []

    def publish(self, topic: str, event: dict[str, Any]) -> None:
        self.published.append((topic, event))
        super().publish(topic, event)

    def events_for(self, topic: str) -> list[dict[str, Any]]:
        return [event for t, event in self.published if t == topic]
