from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol
from uuid import uuid4

from redis import Redis, RedisError

from star_ledger.core.config import Settings

logger = logging.getLogger("stars.ledger.feed")

BALANCE = "balance"
TRANSACTIONS = "transactions"
OWNERSHIP = "ownership"
REDEMPTIONS = "redemptions"
SUBMISSIONS = "submissions"


@dataclass(frozen=True, slots=True)
class ChangeNotice:
    child_id: str
    operation: str
    kinds: frozenset[str] = field(default_factory=frozenset)

    def touches(self, kind: str) -> bool:
        return kind in self.kinds


Listener = Callable[[ChangeNotice], None]


class ChangeFeed(Protocol):
    def publish(self, notice: ChangeNotice) -> None: ...

    def subscribe(self, listener: Listener) -> Callable[[], None]: ...

    def close(self) -> None: ...


class LocalChangeFeed:
    """In-process fan-out of committed changes to registered listeners."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[int, Listener] = {}
        self._next_token = 0

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._listeners[token] = listener

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(token, None)

        return unsubscribe

    def publish(self, notice: ChangeNotice) -> None:
        with self._lock:
            listeners = list(self._listeners.values())
        for listener in listeners:
            try:
                listener(notice)
            except Exception:
                logger.exception(
                    "feed.listener.failed",
                    extra={"child_id": notice.child_id, "operation": notice.operation},
                )

    def close(self) -> None:
        with self._lock:
            self._listeners.clear()


def encode_notice(notice: ChangeNotice, origin: str) -> str:
    return json.dumps(
        {
            "origin": origin,
            "child_id": notice.child_id,
            "operation": notice.operation,
            "kinds": sorted(notice.kinds),
        },
        ensure_ascii=True,
    )


def decode_notice(raw: str) -> tuple[str, ChangeNotice]:
    data = json.loads(raw)
    notice = ChangeNotice(
        child_id=str(data["child_id"]),
        operation=str(data.get("operation") or "unknown"),
        kinds=frozenset(str(kind) for kind in data.get("kinds") or ()),
    )
    return str(data.get("origin") or ""), notice


class RedisChangeFeed(LocalChangeFeed):
    """Local fan-out plus redis pub/sub so other API processes see our commits.

    Notices published by this process are tagged with an origin id and ignored
    when they come back through the channel.
    """

    def __init__(self, client: Redis, channel: str, *, poll_timeout_seconds: float = 1.0) -> None:
        super().__init__()
        self._client = client
        self._channel = channel
        self._poll_timeout_seconds = poll_timeout_seconds
        self._origin = uuid4().hex
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def origin(self) -> str:
        return self._origin

    def publish(self, notice: ChangeNotice) -> None:
        super().publish(notice)
        try:
            self._client.publish(self._channel, encode_notice(notice, self._origin))
        except RedisError as exc:
            logger.warning(
                "feed.redis.publish_failed",
                extra={"child_id": notice.child_id, "operation": notice.operation, "reason": str(exc)},
            )

    def start(self) -> None:
        if self._thread is not None:
            return
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(self._channel)
        self._stop.clear()
        self._thread = threading.Thread(target=self._relay, args=(pubsub,), name="stars-change-feed", daemon=True)
        self._thread.start()
        logger.info("feed.redis.started", extra={"reason": self._channel})

    def _relay(self, pubsub) -> None:
        try:
            while not self._stop.is_set():
                try:
                    message = pubsub.get_message(timeout=self._poll_timeout_seconds)
                except RedisError as exc:
                    logger.warning("feed.redis.receive_failed", extra={"reason": str(exc)})
                    self._stop.wait(self._poll_timeout_seconds)
                    continue
                if message is None or message.get("type") != "message":
                    continue
                self.handle_remote(message["data"])
        finally:
            pubsub.close()

    def handle_remote(self, raw: str) -> None:
        try:
            origin, notice = decode_notice(raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("feed.redis.bad_message", extra={"reason": str(exc)})
            return
        if origin == self._origin:
            return
        LocalChangeFeed.publish(self, notice)

    def close(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self._poll_timeout_seconds * 2)
            self._thread = None
        super().close()
        self._client.close()


def build_change_feed(settings: Settings) -> ChangeFeed:
    if not settings.redis_url:
        return LocalChangeFeed()

    client = Redis.from_url(settings.redis_url, decode_responses=True, encoding="utf-8")
    feed = RedisChangeFeed(client, settings.change_feed_channel)
    try:
        feed.start()
    except RedisError as exc:
        logger.warning("feed.redis.unavailable", extra={"reason": str(exc)})
        client.close()
        return LocalChangeFeed()
    return feed
