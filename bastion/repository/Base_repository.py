"""Acesso ao store partilhado (Redis) com tratamento de erros consistente."""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Set, Tuple

import redis
from redis.exceptions import RedisError

RATE_LIMIT_NS = "rate-limit"
BRUTE_FORCE_NS = "brute-force"
THREAT_NS = "threat"
EVENTS_NS = "events"


class StoreUnavailable(RuntimeError):
    """Falha de conectividade ou timeout ao falar com o store."""

    def __init__(self, operation: str, key: Optional[str] = None) -> None:
        self.operation = operation
        self.key = key
        target = f" key={key}" if key else ""
        super().__init__(f"store operation '{operation}' failed{target}")


def _now_ms() -> int:
    return int(time.time() * 1000)


class SecurityStore:
    """Wrapper fino sobre ``redis.Redis`` com namespaces e operações atómicas.

    Todas as chamadas convertem ``RedisError`` (timeouts incluídos) em
    :class:`StoreUnavailable`; quem chama decide a política (fail-open).
    """

    def __init__(self, client: "redis.Redis", key_prefix: str = "") -> None:
        self.client = client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        socket_timeout: float = 0.25,
        connect_timeout: float = 0.25,
        key_prefix: str = "",
    ) -> "SecurityStore":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=connect_timeout,
            retry_on_timeout=False,
        )
        return cls(client, key_prefix=key_prefix)

    # ------------------------------------------------------------------
    # Utilitários internos
    # ------------------------------------------------------------------
    def key(self, namespace: str, *parts: str) -> str:
        return self.key_prefix + ":".join((namespace, *parts))

    @contextmanager
    def _guard(self, operation: str, key: Optional[str] = None) -> Iterator[None]:
        try:
            yield
        except RedisError as exc:
            raise StoreUnavailable(operation, key) from exc

    # ------------------------------------------------------------------
    # Contadores de janela fixa
    # ------------------------------------------------------------------
    def incr_window(self, key: str, window_ms: int) -> Tuple[int, int]:
        """Incrementa o contador da janela e devolve ``(contagem, pttl_ms)``.

        SET NX PX cria a chave já com TTL; INCR preserva o TTL. Tudo num
        MULTI/EXEC, portanto pedidos concorrentes nunca veem o mesmo valor.
        """

        with self._guard("incr_window", key):
            pipe = self.client.pipeline(transaction=True)
            pipe.set(key, 0, nx=True, px=max(1, int(window_ms)))
            pipe.incr(key)
            pipe.pttl(key)
            _, count, ttl = pipe.execute()
        return int(count), int(ttl)

    def decr_window(self, key: str) -> Optional[int]:
        with self._guard("decr_window", key):
            pipe = self.client.pipeline(transaction=True)
            pipe.decr(key)
            pipe.pttl(key)
            value, ttl = pipe.execute()
            if int(ttl) < 0:
                # a janela expirou entretanto; o DECR recriou a chave sem TTL
                self.client.delete(key)
                return None
        return int(value)

    # ------------------------------------------------------------------
    # Contadores de tentativas (hash: attempts + created_at)
    # ------------------------------------------------------------------
    def record_attempt(self, key: str, provisional_ttl_ms: int) -> Tuple[int, int]:
        """Incrementa ``attempts`` e devolve ``(attempts, created_at_ms)``.

        O TTL provisório é aplicado na mesma transação: a chave nunca fica
        sem expiração, mesmo que o ajuste posterior do TTL falhe.
        """

        with self._guard("record_attempt", key):
            pipe = self.client.pipeline(transaction=True)
            pipe.hsetnx(key, "created_at", _now_ms())
            pipe.hincrby(key, "attempts", 1)
            pipe.hget(key, "created_at")
            pipe.pexpire(key, max(1, int(provisional_ttl_ms)))
            _, attempts, created_at, _ = pipe.execute()
        return int(attempts), int(created_at or _now_ms())

    def read_attempts(self, key: str) -> Tuple[int, int]:
        with self._guard("read_attempts", key):
            pipe = self.client.pipeline(transaction=False)
            pipe.hget(key, "attempts")
            pipe.pttl(key)
            attempts, ttl = pipe.execute()
        return int(attempts or 0), int(ttl)

    def expire_ms(self, key: str, ttl_ms: int) -> bool:
        with self._guard("expire", key):
            return bool(self.client.pexpire(key, max(1, int(ttl_ms))))

    # ------------------------------------------------------------------
    # Hashes, sets e listas
    # ------------------------------------------------------------------
    def hash_get_all(self, key: str) -> Dict[str, str]:
        with self._guard("hgetall", key):
            return dict(self.client.hgetall(key))

    def hash_set(self, key: str, field: str, value: str) -> None:
        with self._guard("hset", key):
            self.client.hset(key, field, value)

    def set_add(self, key: str, member: str) -> None:
        with self._guard("sadd", key):
            self.client.sadd(key, member)

    def set_remove(self, key: str, member: str) -> None:
        with self._guard("srem", key):
            self.client.srem(key, member)

    def set_members(self, key: str) -> Set[str]:
        with self._guard("smembers", key):
            return set(self.client.smembers(key))

    def list_push_trim(self, key: str, value: str, max_len: int) -> None:
        with self._guard("lpush_trim", key):
            pipe = self.client.pipeline(transaction=True)
            pipe.lpush(key, value)
            pipe.ltrim(key, 0, max_len - 1)
            pipe.execute()

    def list_range(self, key: str, start: int, stop: int) -> List[str]:
        with self._guard("lrange", key):
            return list(self.client.lrange(key, start, stop))

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------
    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def close(self) -> None:
        with self._guard("close"):
            self.client.close()


class BaseRepo:
    """Repositório ligado a um namespace do store."""

    namespace: str = ""

    def __init__(self, store: SecurityStore) -> None:
        self.store = store

    def key(self, *parts: str) -> str:
        return self.store.key(self.namespace, *parts)
