"""
Cache get-or-compute com TTL para consultas de configuração.

Backend primário: Redis/Valkey compartilhado entre instâncias.
Fallback: mapa em memória do processo (cachetools.TLRUCache), escolhido uma única vez
na construção quando o Redis não está provisionado ou não responde ao ping.
"""
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Protocol, TypeVar

import redis
from cachetools import TLRUCache
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticSerializationError
from redis.exceptions import RedisError

from workitem_integration.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFIG_TTL_SECONDS = 300
KEY_PREFIX = "workitem-integration:"

_JSON = TypeAdapter(Any)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    expires_at: float


class CacheBackend(Protocol):
    def get(self, key: str) -> tuple[bool, Any]: ...

    def put(self, key: str, value: Any, ttl_seconds: float) -> None: ...

    def delete(self, key: str) -> None: ...

    def lock(self, key: str) -> Any: ...


class InMemoryCacheBackend:
    """Mapa em memória com expiração por entrada e capacidade máxima (sem compartilhamento entre instâncias)."""

    def __init__(self, maxsize: int = 256, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock
        self._entries: TLRUCache = TLRUCache(
            maxsize=maxsize,
            ttu=lambda _key, entry, _now: entry.expires_at,
            timer=clock,
        )
        self._entries_guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def get(self, key: str) -> tuple[bool, Any]:
        with self._entries_guard:
            entry = self._entries.get(key)
        if entry is None:
            return False, None
        return True, entry.value

    def put(self, key: str, value: Any, ttl_seconds: float) -> None:
        entry = CacheEntry(key=key, value=value, expires_at=self.clock() + ttl_seconds)
        with self._entries_guard:
            self._entries[key] = entry

    def delete(self, key: str) -> None:
        with self._entries_guard:
            self._entries.pop(key, None)

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Exclusão mútua por chave; chaves diferentes nunca disputam o mesmo lock."""
        with self._locks_guard:
            key_lock = self._locks.setdefault(key, threading.Lock())
        with key_lock:
            yield


class RedisCacheBackend:
    """
    Cache compartilhado em Redis. Valores gravados como JSON (pydantic) e lidos de volta como
    dados simples; o CacheLayer reconstrói os modelos. Erros em tempo de execução degradam
    para miss, nunca propagam.
    """

    def __init__(
        self,
        client: "redis.Redis",
        prefix: str = KEY_PREFIX,
        lock_timeout: float = 30,
        lock_wait: float = 10,
    ) -> None:
        self.client = client
        self.prefix = prefix
        self.lock_timeout = lock_timeout
        self.lock_wait = lock_wait

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> tuple[bool, Any]:
        try:
            raw = self.client.get(self._key(key))
        except RedisError as e:
            logger.warning("Cache Redis indisponível no get(%s): %s", key, e)
            return False, None
        if raw is None:
            return False, None
        try:
            return True, _JSON.validate_json(raw)
        except PydanticValidationError as e:
            logger.warning("Entrada de cache %s ilegível, tratada como miss: %s", key, e)
            return False, None

    def put(self, key: str, value: Any, ttl_seconds: float) -> None:
        ttl_ms = max(1, int(ttl_seconds * 1000))
        try:
            payload = _JSON.dump_json(value)
        except PydanticSerializationError as e:
            logger.warning("Valor de %s não serializável em JSON; não gravado no Redis: %s", key, e)
            return
        try:
            self.client.set(self._key(key), payload, px=ttl_ms)
        except RedisError as e:
            logger.warning("Cache Redis indisponível no put(%s): %s", key, e)

    def delete(self, key: str) -> None:
        try:
            self.client.delete(self._key(key))
        except RedisError as e:
            logger.warning("Cache Redis indisponível no delete(%s): %s", key, e)

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Lock distribuído por chave; se não for possível obtê-lo, segue sem lock."""
        redis_lock = self.client.lock(
            self._key(f"lock:{key}"), timeout=self.lock_timeout, blocking_timeout=self.lock_wait
        )
        try:
            acquired = bool(redis_lock.acquire())
        except RedisError as e:
            logger.warning("Lock Redis indisponível para %s: %s", key, e)
            acquired = False
        try:
            yield
        finally:
            if acquired:
                try:
                    redis_lock.release()
                except RedisError as e:
                    logger.warning("Falha ao liberar lock Redis de %s: %s", key, e)


class CacheLayer:
    """get-or-compute com TTL sobre um backend plugável."""

    def __init__(self, backend: Optional[CacheBackend] = None) -> None:
        self.backend = backend or InMemoryCacheBackend()

    @property
    def is_distributed(self) -> bool:
        return isinstance(self.backend, RedisCacheBackend)

    def _lookup(self, key: str, adapter: Optional[TypeAdapter]) -> tuple[bool, Any]:
        hit, value = self.backend.get(key)
        if not hit or adapter is None:
            return hit, value
        try:
            return True, adapter.validate_python(value)
        except PydanticValidationError as e:
            logger.warning("Entrada de cache %s fora do formato esperado, tratada como miss: %s", key, e)
            return False, None

    def get_or_compute(
        self,
        key: str,
        ttl_seconds: float,
        supplier: Callable[[], T],
        adapter: Optional[TypeAdapter] = None,
    ) -> T:
        """
        Hit dentro do TTL: devolve o valor sem chamar o supplier.
        Miss/expirado: chama o supplier uma única vez (lock por chave), grava com
        expiração now + ttl_seconds e devolve. Exceções do supplier propagam e nada é gravado.
        `adapter` reconstrói o tipo do valor lido de um backend que guarda JSON.
        """
        hit, value = self._lookup(key, adapter)
        if hit:
            return value
        with self.backend.lock(key):
            hit, value = self._lookup(key, adapter)
            if hit:
                return value
            logger.debug("Cache MISS: %s", key)
            value = supplier()
            self.backend.put(key, value, ttl_seconds)
            return value

    def invalidate(self, key: str) -> None:
        """Remove a entrada de forma síncrona."""
        with self.backend.lock(key):
            self.backend.delete(key)


def build_cache_layer(redis_url: Optional[str] = None, maxsize: Optional[int] = None) -> CacheLayer:
    """
    Escolhe o backend uma única vez: Redis se configurado e respondendo ao ping,
    senão o mapa em memória (degrada a distribuição, não a disponibilidade).
    """
    url = redis_url if redis_url is not None else settings.REDIS_URL
    size = maxsize or settings.CACHE_MAX_ENTRIES
    if url:
        try:
            client = redis.Redis.from_url(url, socket_timeout=2, socket_connect_timeout=2)
            client.ping()
            logger.info("Cache de configuração usando Redis")
            return CacheLayer(RedisCacheBackend(client))
        except (RedisError, OSError, ValueError) as e:
            logger.warning("Redis indisponível, usando cache em memória: %s", e)
    else:
        logger.info("REDIS_URL não configurado; usando cache em memória")
    return CacheLayer(InMemoryCacheBackend(maxsize=size))
