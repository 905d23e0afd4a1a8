#!/usr/bin/env python
"""Wait for the Redis security store to become available."""

from __future__ import annotations

import os
import sys
import time

import redis
from redis.exceptions import RedisError

DEFAULT_TIMEOUT = int(os.environ.get("STORE_STARTUP_TIMEOUT", "60"))
SLEEP_INTERVAL = float(os.environ.get("STORE_RETRY_INTERVAL", "1"))
DEFAULT_URL = "redis://localhost:6379/3"


def get_store_url() -> str:
    return (
        os.environ.get("REDIS_URL")
        or os.environ.get("SECURITY_REDIS_URL")
        or os.environ.get("STORE__URL")
        or DEFAULT_URL
    )


def wait_for_store(timeout: int = DEFAULT_TIMEOUT) -> None:
    url = get_store_url()
    client = redis.Redis.from_url(url, socket_connect_timeout=1, socket_timeout=1)

    start_time = time.monotonic()
    attempt = 0
    while True:
        attempt += 1
        try:
            client.ping()
            client.close()
            print(f"Redis disponível após {attempt} tentativas.")
            return
        except RedisError as exc:
            elapsed = time.monotonic() - start_time
            if elapsed >= timeout:
                print(f"Falha ao conectar ao Redis em {url} após {elapsed:.1f}s: {exc}", file=sys.stderr)
                raise SystemExit(1)
            print(f"Aguardando Redis em {url} (tentativa {attempt})...", file=sys.stderr)
            time.sleep(SLEEP_INTERVAL)


if __name__ == "__main__":
    wait_for_store()
