"""Contadores de janela fixa e de tentativas falhadas, residentes no store."""

from __future__ import annotations

import math
import time
from typing import Tuple

from bastion.models.Security_config import BruteForceConfig, RateLimitConfig
from bastion.repository.Base_repository import BRUTE_FORCE_NS, RATE_LIMIT_NS, SecurityStore, StoreUnavailable
from bastion.utils.logs import get_logger

logger = get_logger(__name__)

_MAX_EXPONENT = 62


def backoff_wait_ms(attempts: int, min_wait_ms: int, max_wait_ms: int) -> int:
    """``min(min_wait * 2^(attempts-1), max_wait)``, nunca negativo."""

    exponent = min(max(1, attempts) - 1, _MAX_EXPONENT)
    wait = min(min_wait_ms * (2 ** exponent), max_wait_ms)
    return max(0, int(wait))


def ms_to_retry_after(ttl_ms: int, fallback_ms: int) -> int:
    """Converte um PTTL em segundos inteiros para ``Retry-After``.

    PTTL negativo (-1 sem TTL, -2 chave inexistente) usa ``fallback_ms``.
    """

    if ttl_ms is None or ttl_ms < 0:
        ttl_ms = fallback_ms
    return max(0, math.ceil(ttl_ms / 1000))


class RateLimitCounter:
    def __init__(self, store: SecurityStore, config: RateLimitConfig) -> None:
        self.store = store
        self.config = config

    def key(self, identity: str) -> str:
        return self.store.key(RATE_LIMIT_NS, identity)

    def hit(self, identity: str) -> Tuple[int, int]:
        """Conta um pedido e devolve ``(contagem, retry_after_s)``."""

        count, ttl_ms = self.store.incr_window(self.key(identity), self.config.window_ms)
        ttl_ms = min(ttl_ms, self.config.window_ms) if ttl_ms >= 0 else ttl_ms
        return count, ms_to_retry_after(ttl_ms, self.config.window_ms)

    def release(self, identity: str) -> None:
        self.store.decr_window(self.key(identity))


class BruteForceCounter:
    """Tentativas falhadas por ``(ip, endpoint)`` com backoff exponencial.

    O TTL é recalculado a cada falha como ``min(backoff, lifetime - idade)``:
    ``lifetime`` é um tecto absoluto sobre a idade do contador, medido desde
    a primeira tentativa (``created_at`` guardado no próprio hash). O número
    de tentativas só volta a zero quando a chave expira.
    """

    def __init__(self, store: SecurityStore, config: BruteForceConfig) -> None:
        self.store = store
        self.config = config

    def key(self, ip: str, endpoint: str) -> str:
        return self.store.key(BRUTE_FORCE_NS, ip, endpoint)

    def status(self, ip: str, endpoint: str) -> Tuple[int, int]:
        attempts, ttl_ms = self.store.read_attempts(self.key(ip, endpoint))
        return attempts, ms_to_retry_after(ttl_ms, self.config.min_wait_ms)

    def ttl_for(self, attempts: int, created_at_ms: int, now_ms: int) -> int:
        wait = backoff_wait_ms(attempts, self.config.min_wait_ms, self.config.max_wait_ms)
        age = max(0, now_ms - created_at_ms)
        remaining_life = max(0, self.config.lifetime_ms - age)
        return max(0, min(wait, remaining_life))

    def record_failure(self, ip: str, endpoint: str) -> Tuple[int, int]:
        """Regista uma falha; devolve ``(attempts, ttl_ms)`` aplicado."""

        key = self.key(ip, endpoint)
        # a transação já deixa o lifetime como TTL provisório
        attempts, created_at_ms = self.store.record_attempt(key, self.config.lifetime_ms)
        ttl_ms = self.ttl_for(attempts, created_at_ms, int(time.time() * 1000))
        # ttl 0: o contador já atingiu o lifetime e expira já
        try:
            self.store.expire_ms(key, ttl_ms)
        except StoreUnavailable as exc:
            logger.warning("TTL de backoff não aplicado a %s (%s); fica o provisório", key, exc)
            return attempts, self.config.lifetime_ms
        return attempts, ttl_ms
