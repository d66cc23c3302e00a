# infra/registry.py
import itertools
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

Json = Dict[str, Any]
Callback = Callable[[Json], Union[None, Awaitable[None]]]


@dataclass(eq=False)
class Subscription:
    topic: str
    callback: Callback
    seq: int
    active: bool = False
    meta: Dict[str, Any] = field(default_factory=dict)


class SubscriptionRegistry:
    """
    topic -> Subscription, kept in registration order so reconnects replay
    deterministically. Registering an existing topic replaces its callback in
    place. Safe to call from several threads; readers iterate snapshots.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._subs: Dict[str, Subscription] = {}
        self._seq = itertools.count(1)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subs)

    def __contains__(self, topic: str) -> bool:
        with self._lock:
            return topic in self._subs

    def register(self, topic: str, callback: Callback, **meta) -> Subscription:
        if not topic:
            raise ValueError("topic must be non-empty")
        with self._lock:
            sub = Subscription(topic=topic, callback=callback, seq=next(self._seq), meta=meta)
            prev = self._subs.get(topic)
            if prev is not None:
                # keep replay position of the original registration
                sub.seq = prev.seq
                sub.active = prev.active
            self._subs[topic] = sub
            return sub

    def unregister(self, handle: Union[Subscription, str]) -> bool:
        with self._lock:
            if isinstance(handle, Subscription):
                if self._subs.get(handle.topic) is not handle:
                    return False
                del self._subs[handle.topic]
                return True
            return self._subs.pop(handle, None) is not None

    def lookup(self, topic: str) -> Optional[Subscription]:
        with self._lock:
            sub = self._subs.get(topic)
            if sub is not None:
                return sub
            # "position" also receives "position.linear"
            best = None
            for key, cand in self._subs.items():
                if topic.startswith(key + ".") and (best is None or len(key) > len(best.topic)):
                    best = cand
            return best

    def replay_all(self) -> List[Subscription]:
        with self._lock:
            return sorted(self._subs.values(), key=lambda s: s.seq)

    def topics(self) -> List[str]:
        return [s.topic for s in self.replay_all()]

    def mark_active(self, topics: Iterable[str], active: bool = True) -> None:
        with self._lock:
            for t in topics:
                sub = self._subs.get(t)
                if sub is not None:
                    sub.active = active

    def mark_all_inactive(self) -> None:
        with self._lock:
            for sub in self._subs.values():
                sub.active = False

    def clear(self) -> None:
        with self._lock:
            self._subs.clear()
