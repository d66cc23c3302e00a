# infra/router.py
import inspect
import json
from typing import Any, Dict, Optional, Union

from infra.enums import RequestKind
from infra.pending import PendingRequests
from infra.registry import SubscriptionRegistry
from utils.logger import logger
from utils.time import utc_ms

Json = Dict[str, Any]

_CONTROL_OPS = {
    "ping": RequestKind.PING,
    "pong": RequestKind.PING,
    "auth": RequestKind.AUTH,
    "subscribe": RequestKind.SUBSCRIBE,
    "unsubscribe": RequestKind.UNSUBSCRIBE,
}


class MessageRouter:
    """
    Demultiplexes inbound frames for one client. Control frames (pong, auth
    ack, (un)subscribe ack) complete pending requests; data frames go to the
    callback registered for their ``topic``.

    ``dispatch`` runs inside the single receive loop and awaits callbacks in
    place, so a slow callback holds up every topic on the connection.
    """

    def __init__(self, registry: SubscriptionRegistry, pending: PendingRequests, name: str = "") -> None:
        self._registry = registry
        self._pending = pending
        self._name = name
        self.last_pong_ms: Optional[int] = None
        self.dropped = 0
        self.dispatched = 0

    async def dispatch(self, raw: Union[str, bytes]) -> None:
        msg = self._parse(raw)
        if msg is None:
            return

        op = msg.get("op")
        if op in _CONTROL_OPS:
            self._on_control(_CONTROL_OPS[op], msg)
            return

        topic = msg.get("topic")
        if not topic:
            logger.debug(f"WS {self._name} router: frame without topic dropped: {msg}")
            self.dropped += 1
            return

        sub = self._registry.lookup(topic)
        if sub is None:
            logger.warning(f"WS {self._name} router: no subscription for topic={topic}, dropped")
            self.dropped += 1
            return

        try:
            res = sub.callback(msg)
            if inspect.isawaitable(res):
                await res
            self.dispatched += 1
        except Exception:
            # one bad handler must not starve the other topics
            logger.exception(f"WS {self._name} router: callback failed topic={topic}")

    def _parse(self, raw: Union[str, bytes]) -> Optional[Json]:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        text = raw.strip()
        if text.lower() in ("ping", "pong"):
            self.last_pong_ms = utc_ms()
            return None
        try:
            msg = json.loads(text)
        except json.JSONDecodeError:
            logger.warning(f"WS {self._name} router: invalid json dropped: {text[:256]}")
            self.dropped += 1
            return None
        if not isinstance(msg, dict):
            logger.warning(f"WS {self._name} router: non-object frame dropped: {text[:256]}")
            self.dropped += 1
            return None
        return msg

    def _on_control(self, kind: RequestKind, msg: Json) -> None:
        req_id = msg.get("req_id") or ""

        if kind is RequestKind.PING:
            self.last_pong_ms = utc_ms()
            if req_id and self._pending.get(req_id):
                self._pending.resolve(req_id, msg)
            logger.debug(f"WS {self._name} pong: {msg}")
            return

        if req_id:
            pr = self._pending.get(req_id)
            if pr is None or pr.kind is not kind:
                # not one of ours (e.g. a raw frame written through send())
                logger.info(f"WS {self._name} {kind.value} ack for unknown req_id={req_id} dropped: {msg}")
                return
            self._pending.resolve(req_id, msg)
        else:
            pr = self._pending.resolve_kind(kind, msg)

        if kind is RequestKind.AUTH:
            if pr is None:
                logger.warning(f"WS {self._name} auth ack without pending request: {msg}")
            return

        ok = bool(msg.get("success", True))
        if not ok:
            logger.error(f"WS {self._name} {kind.value} rejected: {msg.get('ret_msg')} args={pr.args if pr else None}")
            return
        if pr is None:
            logger.debug(f"WS {self._name} {kind.value} ack without pending request: {msg}")
            return
        if kind is RequestKind.SUBSCRIBE:
            self._registry.mark_active(pr.args)
        logger.info(f"WS {self._name} {kind.value} ack: {pr.args}")
