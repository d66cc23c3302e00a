# infra/pending.py
import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from infra.enums import RequestKind
from utils.time import utc_ms


@dataclass
class PendingRequest:
    req_id: str
    kind: RequestKind
    epoch: int
    future: asyncio.Future
    args: List[str] = field(default_factory=list)
    issued_ms: int = field(default_factory=utc_ms)

    @property
    def done(self) -> bool:
        return self.future.done()


def _consume(fut: asyncio.Future) -> None:
    # nobody awaits subscribe acks; read the exception so asyncio doesn't warn
    if not fut.cancelled():
        fut.exception()


class PendingRequests:
    """
    Correlates outbound control frames (auth / subscribe / unsubscribe) with
    their acks. Every future completes once: on ack, on failure, or with
    StaleRequestError when its connection epoch is retired.
    """

    def __init__(self, prefix: str) -> None:
        self._prefix = prefix
        self._seq = itertools.count(1)
        self._items: Dict[str, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._items)

    def next_id(self) -> str:
        return f"{self._prefix}-{next(self._seq)}"

    def create(self, kind: RequestKind, epoch: int,
               args: Optional[List[str]] = None,
               req_id: Optional[str] = None) -> PendingRequest:
        rid = req_id or self.next_id()
        if rid in self._items:
            raise ValueError(f"duplicate request id {rid}")
        fut = asyncio.get_running_loop().create_future()
        fut.add_done_callback(_consume)
        pr = PendingRequest(req_id=rid, kind=kind, epoch=epoch, future=fut, args=list(args or []))
        self._items[rid] = pr
        return pr

    def get(self, req_id: str) -> Optional[PendingRequest]:
        return self._items.get(req_id)

    def oldest(self, kind: RequestKind) -> Optional[PendingRequest]:
        for pr in self._items.values():
            if pr.kind is kind:
                return pr
        return None

    def resolve(self, req_id: str, result: Any) -> Optional[PendingRequest]:
        pr = self._items.pop(req_id, None)
        if pr and not pr.future.done():
            pr.future.set_result(result)
        return pr

    def resolve_kind(self, kind: RequestKind, result: Any) -> Optional[PendingRequest]:
        pr = self.oldest(kind)
        if pr is None:
            return None
        return self.resolve(pr.req_id, result)

    def fail(self, req_id: str, exc: BaseException) -> Optional[PendingRequest]:
        pr = self._items.pop(req_id, None)
        if pr and not pr.future.done():
            pr.future.set_exception(exc)
        return pr

    def discard(self, req_id: str) -> None:
        pr = self._items.pop(req_id, None)
        if pr and not pr.future.done():
            pr.future.cancel()

    def fail_epoch(self, epoch: int, exc: BaseException) -> int:
        stale = [rid for rid, pr in self._items.items() if pr.epoch == epoch]
        for rid in stale:
            self.fail(rid, exc)
        return len(stale)

    def fail_all(self, exc: BaseException) -> int:
        n = 0
        for rid in list(self._items):
            self.fail(rid, exc)
            n += 1
        return n
