from collections import OrderedDict


class DedupGuard:
    """Remembers the last ``capacity`` message ids so redelivered events are skipped."""

    def __init__(self, capacity: int = 1000) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._ids: "OrderedDict[str, None]" = OrderedDict()

    def seen(self, message_id: str) -> bool:
        if message_id in self._ids:
            return True
        if len(self._ids) >= self.capacity:
            self._ids.popitem(last=False)
        self._ids[message_id] = None
        return False

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids
