"""Varrimento de payloads contra conjuntos de padrões."""

from __future__ import annotations

import json
from typing import Any, Iterable, Iterator, List, Optional, Pattern, Sequence, Tuple

from bastion.models.Security_config import compile_patterns

SQL_INJECTION_PATTERNS: Tuple[Pattern[str], ...] = compile_patterns([
    r"(\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|UNION|SCRIPT)\b)",
    r"(--|/\*|\*/|;|'|\"|`)",
    r"(\bOR\b|\bAND\b).*?[=<>]",
])

XSS_PATTERNS: Tuple[Pattern[str], ...] = compile_patterns([
    r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>",
    r"<iframe\b[^<]*(?:(?!</iframe>)<[^<]*)*</iframe>",
    r"javascript:",
    r"on\w+\s*=",
    r"<img[^>]+src[^>]*>",
])


def iter_string_leaves(payload: Any, path: str = "") -> Iterator[Tuple[str, str]]:
    """Percorre dicts/listas e produz ``(caminho, texto)`` para cada folha string.

    Caminhos usam ``.`` para chaves e ``[i]`` para índices: ``user.emails[0]``.
    """

    if isinstance(payload, str):
        yield path, payload
    elif isinstance(payload, bytes):
        yield path, payload.decode("utf-8", errors="replace")
    elif isinstance(payload, dict):
        for key, value in payload.items():
            child = f"{path}.{key}" if path else str(key)
            yield from iter_string_leaves(value, child)
    elif isinstance(payload, (list, tuple)):
        for index, value in enumerate(payload):
            yield from iter_string_leaves(value, f"{path}[{index}]")


def scan_payload(payload: Any, patterns: Sequence[Pattern[str]]) -> List[Tuple[str, str]]:
    """Devolve ``(caminho, padrão)`` para cada folha que casa com algum padrão."""

    hits: List[Tuple[str, str]] = []
    for path, text in iter_string_leaves(payload):
        for pattern in patterns:
            if pattern.search(text):
                hits.append((path or "$", pattern.pattern))
                break
    return hits


def serialize_body(body: Any) -> str:
    if body is None:
        return ""
    if isinstance(body, str):
        return body
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    try:
        return json.dumps(body, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(body)


def first_match(
    sources: Iterable[Tuple[str, str]],
    patterns: Sequence[Pattern[str]],
) -> Optional[Tuple[Pattern[str], str]]:
    """Primeiro padrão (na ordem configurada) que casa com alguma fonte."""

    sources = [(name, text) for name, text in sources if text]
    for pattern in patterns:
        for name, text in sources:
            if pattern.search(text):
                return pattern, name
    return None


__all__ = [
    "SQL_INJECTION_PATTERNS",
    "XSS_PATTERNS",
    "first_match",
    "iter_string_leaves",
    "scan_payload",
    "serialize_body",
]
