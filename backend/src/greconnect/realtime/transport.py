"""Redis pub/sub backplane that relays room events between server instances."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import redis.asyncio as redis_asyncio
from redis.exceptions import RedisError

from app.monitoring.metrics import realtime_transport_restarts_total


logger = logging.getLogger(__name__)

_REDIS_ERRORS: tuple[type[BaseException], ...] = (
    RedisError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)

_RECOVERY_BASE_DELAY = 0.5
_RECOVERY_MAX_DELAY = 30.0

MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(slots=True)
class BrokerConfig:
    """Connection settings for the backplane."""

    redis_url: str | None
    prefix: str = "greconnect.realtime"
    node_id: str | None = None


class TransportUnavailableError(RuntimeError):
    """Raised when the backplane is not configured or cannot be reached."""


class Subscription:
    """Handle returned from :meth:`RedisBackplane.subscribe`."""

    def __init__(self, name: str, cleanup: Callable[[], Awaitable[None]]) -> None:
        self._name = name
        self._cleanup = cleanup

    @property
    def name(self) -> str:
        return self._name

    async def close(self) -> None:
        await self._cleanup()


@dataclass(slots=True)
class _ChannelState:
    channel: str
    handler: MessageHandler
    task: asyncio.Task[Any] | None = None
    pubsub: Any | None = None
    active: bool = True
    suspending: bool = False


class RedisBackplane:
    """Publish and receive JSON payloads on prefixed Redis channels.

    Reader tasks that die are restarted in the background with exponential
    backoff; publishing while Redis is down raises
    :class:`TransportUnavailableError` and schedules the same recovery.
    """

    def __init__(self, config: BrokerConfig) -> None:
        self._config = config
        self._redis: redis_asyncio.Redis | None = None
        self._states: list[_ChannelState] = []
        self._recovery_lock = asyncio.Lock()
        self._recovery_task: asyncio.Task[Any] | None = None

    @property
    def node_id(self) -> str | None:
        return self._config.node_id

    @property
    def enabled(self) -> bool:
        return bool(self._config.redis_url)

    @property
    def connected(self) -> bool:
        return self._redis is not None

    async def start(self) -> None:
        if not self._config.redis_url or self._redis is not None:
            return
        client = redis_asyncio.from_url(
            self._config.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        try:
            await client.ping()
        except (*_REDIS_ERRORS, OSError) as exc:
            logger.warning("Failed to connect to Redis realtime backend at startup")
            await client.aclose()
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        self._redis = client

    async def stop(self) -> None:
        for state in list(self._states):
            await self._close_state(state)
        if self._recovery_task is not None:
            self._recovery_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._recovery_task
            self._recovery_task = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    def _channel(self, topic: str) -> str:
        prefix = self._config.prefix.rstrip(".")
        return f"{prefix}.{topic}" if prefix else topic

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        if not self._config.redis_url:
            raise TransportUnavailableError("Redis backend is not configured")
        if self._redis is None:
            raise TransportUnavailableError("Redis backend is not connected")
        channel = self._channel(topic)
        try:
            await self._redis.publish(channel, json.dumps(payload))
        except _REDIS_ERRORS as exc:
            self._trigger_recovery("publish_failed")
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        logger.debug("Published realtime payload via Redis", extra={"channel": channel})

    async def subscribe(self, topic: str, handler: MessageHandler) -> Subscription:
        if self._redis is None:
            raise TransportUnavailableError("Redis backend is not connected")
        state = _ChannelState(channel=self._channel(topic), handler=handler)
        self._states.append(state)
        try:
            await self._attach_reader(state)
        except TransportUnavailableError:
            await self._close_state(state)
            self._trigger_recovery("subscribe_failed")
            raise

        async def cleanup() -> None:
            await self._close_state(state)

        return Subscription(state.channel, cleanup)

    # ------------------------------------------------------------------
    # Reader lifecycle
    # ------------------------------------------------------------------
    async def _attach_reader(self, state: _ChannelState) -> None:
        if self._redis is None:
            raise TransportUnavailableError("Redis backend is not connected")
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(state.channel)
        except _REDIS_ERRORS as exc:
            await pubsub.aclose()
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        state.pubsub = pubsub

        async def reader() -> None:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                raw = message.get("data")
                if not isinstance(raw, str):
                    continue
                try:
                    payload = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(
                        "Discarded malformed realtime payload", extra={"channel": state.channel}
                    )
                    continue
                try:
                    await state.handler(payload)
                except Exception:
                    logger.exception(
                        "Realtime handler failed", extra={"channel": state.channel}
                    )

        task = asyncio.create_task(reader(), name=f"realtime-redis-{state.channel}")
        state.task = task
        task.add_done_callback(lambda finished: self._on_reader_done(state, finished))

    def _on_reader_done(self, state: _ChannelState, task: asyncio.Task[Any]) -> None:
        state.task = None
        if not state.active or state.suspending or task.cancelled():
            return
        exc = task.exception()
        logger.warning(
            "Redis subscription reader stopped; scheduling recovery",
            exc_info=exc,
            extra={"channel": state.channel},
        )
        self._trigger_recovery("reader_stopped")

    async def _pause_state(self, state: _ChannelState) -> None:
        state.suspending = True
        task = state.task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        state.task = None
        pubsub = state.pubsub
        state.pubsub = None
        if pubsub is not None:
            with contextlib.suppress(*_REDIS_ERRORS):
                await pubsub.unsubscribe(state.channel)
            with contextlib.suppress(*_REDIS_ERRORS):
                await pubsub.aclose()
        state.suspending = False

    async def _close_state(self, state: _ChannelState) -> None:
        state.active = False
        await self._pause_state(state)
        if state in self._states:
            self._states.remove(state)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------
    def _trigger_recovery(self, reason: str) -> None:
        if not self._config.redis_url:
            return
        if self._recovery_task is not None and not self._recovery_task.done():
            return
        logger.info("Scheduling Redis realtime recovery", extra={"reason": reason})
        self._recovery_task = asyncio.create_task(
            self._recovery_runner(reason), name="realtime-redis-recovery"
        )

    async def _recovery_runner(self, reason: str) -> None:
        attempt = 0
        while True:
            await asyncio.sleep(min(_RECOVERY_BASE_DELAY * (2**attempt), _RECOVERY_MAX_DELAY))
            try:
                await self._restart(reason)
            except TransportUnavailableError:
                attempt += 1
                logger.warning(
                    "Redis realtime recovery attempt failed",
                    extra={"attempt": attempt, "reason": reason},
                )
                continue
            break
        self._recovery_task = None

    async def _restart(self, reason: str) -> None:
        async with self._recovery_lock:
            for state in list(self._states):
                await self._pause_state(state)
            if self._redis is not None:
                with contextlib.suppress(*_REDIS_ERRORS):
                    await self._redis.aclose()
                self._redis = None
            await self.start()
            for state in [state for state in self._states if state.active]:
                await self._attach_reader(state)

        realtime_transport_restarts_total.labels("redis", reason).inc()
        logger.info(
            "Redis realtime backend recovered",
            extra={"reason": reason, "subscriptions": len(self._states)},
        )


ROOMS_TOPIC = "rooms"


__all__ = [
    "BrokerConfig",
    "RedisBackplane",
    "Subscription",
    "TransportUnavailableError",
    "ROOMS_TOPIC",
]
