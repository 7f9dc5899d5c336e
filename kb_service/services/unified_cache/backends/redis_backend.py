"""Redis fast-tier backend with a supervised connection.

The connection is modelled as a small state machine::

    disconnected -> connecting -> connected -> ready
    connecting | connected | ready -> error -> reconnecting -> connecting
    any -> ended (terminal)

Connection-class failures move the backend to ``error`` and start a
background reconnect with exponential backoff. After ``max_attempts``
failed reconnects the backend gives up, calls the ``on_max_retries``
callbacks and waits for an explicit ``reconnect()``.
"""

import asyncio
import json
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from kb_service.core.config import Settings, settings as default_settings
from kb_service.core.errors import FastTierError
from kb_service.core.logging import get_logger
from kb_service.services.unified_cache.backends.base import ICacheBackend, CacheStats

logger = get_logger(__name__)

STARTUP_KEY = "server:startup"
DEFAULT_TTL = 300


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    READY = "ready"
    ERROR = "error"
    RECONNECTING = "reconnecting"
    ENDED = "ended"


_S = ConnectionState
TRANSITIONS: Dict[ConnectionState, FrozenSet[ConnectionState]] = {
    _S.DISCONNECTED: frozenset({_S.CONNECTING, _S.ENDED}),
    _S.CONNECTING: frozenset({_S.CONNECTED, _S.ERROR, _S.ENDED}),
    _S.CONNECTED: frozenset({_S.READY, _S.ERROR, _S.ENDED}),
    _S.READY: frozenset({_S.ERROR, _S.ENDED}),
    _S.ERROR: frozenset({_S.RECONNECTING, _S.ENDED}),
    _S.RECONNECTING: frozenset({_S.CONNECTING, _S.ENDED}),
    _S.ENDED: frozenset(),
}

# Failures that mean the connection itself is gone
CONNECTION_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError, asyncio.TimeoutError)


class RedisBackend(ICacheBackend):
    """Redis backend with reconnect supervision and degrade-safe commands.

    All keys are stored under ``key_prefix``; values are JSON-serialized.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        host: str = "localhost",
        port: int = 6379,
        password: Optional[str] = None,
        db: int = 0,
        key_prefix: str = "freshdesk:",
        connect_timeout: float = 5.0,
        command_timeout: float = 3.0,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        default_ttl: int = DEFAULT_TTL,
        client_factory: Optional[Callable[[], Any]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._redis_url = redis_url
        self._host = host
        self._port = port
        self._password = password
        self._db = db
        self.key_prefix = key_prefix
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.default_ttl = default_ttl
        self._client_factory = client_factory or self._create_client
        self._sleep = sleep

        self._client: Optional[Any] = None
        self._state = ConnectionState.DISCONNECTED
        self._use_fast_tier = True
        self._stats = CacheStats()
        self._attempts = 0
        self._retries_exhausted = False
        self._reconnect_task: Optional[asyncio.Task] = None
        self._max_retries_callbacks: List[Callable[[Optional[BaseException]], None]] = []
        self._last_error: Optional[str] = None

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None, **overrides: Any) -> "RedisBackend":
        config = config or default_settings
        kwargs: Dict[str, Any] = dict(
            redis_url=config.redis_url,
            host=config.redis_host,
            port=config.redis_port,
            password=config.redis_password,
            db=config.redis_db,
            key_prefix=config.redis_key_prefix,
            connect_timeout=config.redis_connect_timeout,
            command_timeout=config.redis_command_timeout,
            max_attempts=config.redis_max_connection_attempts,
            base_delay=config.redis_reconnect_delay,
            max_delay=config.redis_max_reconnect_delay,
            default_ttl=config.article_cache_ttl,
        )
        kwargs.update(overrides)
        return cls(**kwargs)

    def _create_client(self) -> redis.Redis:
        options: Dict[str, Any] = dict(
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=self.connect_timeout,
            socket_timeout=self.command_timeout,
        )
        if self._redis_url:
            return redis.from_url(self._redis_url, **options)
        return redis.Redis(
            host=self._host,
            port=self._port,
            password=self._password,
            db=self._db,
            **options,
        )

    # State

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _transition(self, new_state: ConnectionState) -> None:
        if new_state not in TRANSITIONS[self._state]:
            raise FastTierError(
                f"Invalid connection transition {self._state.value} -> {new_state.value}",
                operation="transition",
            )
        logger.debug("Fast tier %s -> %s", self._state.value, new_state.value)
        self._state = new_state

    @property
    def connected(self) -> bool:
        return self._state in (ConnectionState.CONNECTED, ConnectionState.READY)

    @property
    def use_fast_tier(self) -> bool:
        return self._use_fast_tier

    def set_usage(self, enabled: bool) -> None:
        logger.info("Fast tier usage %s", "enabled" if enabled else "disabled")
        self._use_fast_tier = enabled

    @property
    def retries_exhausted(self) -> bool:
        return self._retries_exhausted

    @property
    def connection_attempts(self) -> int:
        return self._attempts

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def on_max_retries(self, callback: Callable[[Optional[BaseException]], None]) -> None:
        """Register a callback run once reconnect attempts are exhausted."""
        self._max_retries_callbacks.append(callback)

    def _k(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    # Connection lifecycle

    async def connect(self) -> bool:
        """Open the connection and run the startup smoke test.

        Returns:
            True if connected. On failure a background reconnect is started.
        """
        if self.connected:
            return True
        if self._state in (ConnectionState.ENDED, ConnectionState.CONNECTING):
            return False

        if self._state is ConnectionState.ERROR:
            self._transition(ConnectionState.RECONNECTING)
        if await self._open():
            return True

        self._schedule_reconnect()
        return False

    async def initialize(self, timeout: float = 10.0) -> bool:
        """Connect with an overall deadline; never raises."""
        try:
            return await asyncio.wait_for(self.connect(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Fast tier initialization timed out after %.1fs", timeout)
            if self._state is ConnectionState.CONNECTING:
                await self._drop_client()
                self._fail(asyncio.TimeoutError("initialization timed out"))
                self._schedule_reconnect()
            return False

    async def _open(self) -> bool:
        """One connection attempt. Leaves the state at connected/ready or error."""
        self._transition(ConnectionState.CONNECTING)
        try:
            self._client = self._client_factory()
            await asyncio.wait_for(self._client.ping(), timeout=self.connect_timeout)
        except (RedisError, *CONNECTION_ERRORS) as e:
            logger.warning("Fast tier connection failed: %s", e)
            await self._drop_client()
            self._fail(e)
            return False

        self._transition(ConnectionState.CONNECTED)
        self._attempts = 0
        self._retries_exhausted = False
        self._last_error = None
        logger.info("Connected to Redis fast tier")

        if await self._smoke_test():
            self._transition(ConnectionState.READY)
        else:
            logger.warning("Fast tier smoke test failed, disabling fast tier usage")
            self.set_usage(False)
        return True

    async def _smoke_test(self) -> bool:
        """Write and read back a startup marker."""
        marker = {"status": "ok", "ts": asyncio.get_running_loop().time()}
        try:
            await self._client.set(self._k(STARTUP_KEY), json.dumps(marker), ex=60)
            raw = await self._client.get(self._k(STARTUP_KEY))
            return raw is not None and json.loads(raw) == marker
        except (RedisError, ValueError, *CONNECTION_ERRORS) as e:
            logger.warning("Fast tier smoke test error: %s", e)
            return False

    def _fail(self, error: BaseException) -> None:
        self._last_error = str(error)
        if self._state is not ConnectionState.ERROR:
            self._transition(ConnectionState.ERROR)

    def _schedule_reconnect(self) -> None:
        if self._retries_exhausted or self._state is ConnectionState.ENDED:
            return
        if self._reconnect_task and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    def _backoff_delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def _reconnect_loop(self) -> None:
        while self._state is ConnectionState.ERROR:
            self._attempts += 1
            if self._attempts > self.max_attempts:
                self._give_up()
                return

            delay = self._backoff_delay(self._attempts)
            logger.info(
                "Reconnecting to Redis in %.1fs (attempt %d/%d)",
                delay, self._attempts, self.max_attempts,
            )
            self._transition(ConnectionState.RECONNECTING)
            await self._sleep(delay)
            if self._state is ConnectionState.ERROR:
                continue
            if self._state is not ConnectionState.RECONNECTING:
                return
            if await self._open():
                return

    def _give_up(self) -> None:
        self._retries_exhausted = True
        logger.error(
            "Redis connection failed after %d attempts, fast tier disabled until reconnect()",
            self.max_attempts,
        )
        error = FastTierError(self._last_error or "Max reconnect attempts reached", operation="connect")
        for callback in self._max_retries_callbacks:
            try:
                callback(error)
            except Exception as e:
                logger.error("on_max_retries callback failed: %s", e)

    async def reconnect(self) -> bool:
        """Reset the attempt counter and connect again."""
        if self._state is ConnectionState.ENDED:
            return False
        await self._cancel_reconnect()
        self._attempts = 0
        self._retries_exhausted = False
        if self.connected:
            return True
        return await self.connect()

    async def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _drop_client(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            try:
                await client.aclose()
            except Exception as e:
                logger.debug("Error closing Redis client: %s", e)

    async def disconnect(self) -> None:
        """Close the connection for good."""
        await self._cancel_reconnect()
        await self._drop_client()
        if self._state is not ConnectionState.ENDED:
            self._transition(ConnectionState.ENDED)
        logger.info("Disconnected from Redis fast tier")

    # Commands

    async def _execute(self, operation: str, key: str, command: Callable[[], Awaitable[Any]], default: Any) -> Any:
        if not self.connected:
            logger.debug("Fast tier not connected, skipping %s %s", operation, key)
            return default

        try:
            return await command()
        except CONNECTION_ERRORS as e:
            logger.error("Redis %s connection error for %s: %s", operation, key, e)
            self._stats.record_error()
            if self.connected:
                await self._drop_client()
                self._fail(e)
                self._schedule_reconnect()
            return default
        except RedisError as e:
            logger.error("Redis %s error for %s: %s", operation, key, e)
            self._stats.record_error()
            return default

    async def get(self, key: str) -> Optional[Any]:
        async def command():
            value = await self._client.get(self._k(key))
            if value is None:
                self._stats.record_miss()
                return None
            self._stats.record_hit()
            try:
                return json.loads(value)
            except (json.JSONDecodeError, TypeError):
                logger.warning("Non-JSON value stored at %s", key)
                return value

        return await self._execute("GET", key, command, None)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if ttl is not None and ttl <= 0:
            logger.warning("Refusing to cache %s with non-positive TTL %s", key, ttl)
            return False
        ttl = ttl if ttl is not None else self.default_ttl

        async def command():
            serialized = json.dumps(value)
            await self._client.setex(self._k(key), timedelta(seconds=ttl), serialized)
            return True

        try:
            return await self._execute("SET", key, command, False)
        except (TypeError, ValueError) as e:
            logger.error("Value for %s is not JSON serializable: %s", key, e)
            self._stats.record_error()
            return False

    async def delete(self, key: str) -> bool:
        async def command():
            return await self._client.delete(self._k(key)) > 0

        return await self._execute("DEL", key, command, False)

    async def exists(self, key: str) -> bool:
        async def command():
            return await self._client.exists(self._k(key)) > 0

        return await self._execute("EXISTS", key, command, False)

    async def keys(self, pattern: str = "*") -> List[str]:
        prefix_len = len(self.key_prefix)

        async def command():
            return [
                key[prefix_len:]
                async for key in self._client.scan_iter(match=self._k(pattern))
            ]

        return await self._execute("SCAN", pattern, command, [])

    async def clear_pattern(self, pattern: str) -> int:
        async def command():
            full_keys = [key async for key in self._client.scan_iter(match=self._k(pattern))]
            if not full_keys:
                return 0
            return await self._client.delete(*full_keys)

        return await self._execute("CLEAR", pattern, command, 0)

    # Diagnostics

    async def get_info(self) -> Dict[str, Any]:
        """Parsed ``INFO`` sections, or an error summary when not connected."""
        if not self.connected:
            return {"connected": False, "error": "Not connected to Redis"}

        async def command():
            return {
                "connected": True,
                "server_info": await self._client.info("server"),
                "memory_info": await self._client.info("memory"),
                "stats_info": await self._client.info("stats"),
                "keyspace_info": await self._client.info("keyspace"),
                "key_prefix": self.key_prefix,
            }

        return await self._execute(
            "INFO", "*", command, {"connected": False, "error": "INFO command failed"}
        )

    def get_health_status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {
            "backend": "redis",
            "state": self._state.value,
            "connected": self.connected,
            "use_fast_tier": self._use_fast_tier,
            "connection_attempts": self._attempts,
            "retries_exhausted": self._retries_exhausted,
            "key_prefix": self.key_prefix,
            "stats": self._stats.to_dict(),
        }
        if self._redis_url:
            status["connection_type"] = "url"
        else:
            status.update(connection_type="config", host=self._host, port=self._port, db=self._db)
        if self._last_error:
            status["last_error"] = self._last_error
        return status
