#!/usr/bin/env python3
# bastion/jobs/export_events.py
"""
Job de exportação do log persistido de eventos de segurança.
Executar via cron, p.ex. 0 * * * * (de hora a hora), para arquivar o log
antes de os eventos mais antigos serem descartados.

Uso:
    python -m bastion.jobs.export_events [ficheiro_saida]

Sem ficheiro, escreve JSON lines em stdout (mais recente primeiro).
"""

import json
import sys
from datetime import datetime
from typing import Optional, TextIO

from bastion.app.settings import load_settings
from bastion.repository.Base_repository import SecurityStore, StoreUnavailable
from bastion.repository.Events_repository import EventRepo
from bastion.utils.logs import logger


def export_events(out: TextIO, store: Optional[SecurityStore] = None, batch_size: int = 500) -> int:
    """
    Escreve todos os eventos persistidos em ``out``, um objeto JSON por linha.

    Args:
        out: destino de texto
        store: store a usar; por omissão é construído a partir das settings
        batch_size: eventos lidos por chamada LRANGE

    Returns:
        Número de eventos exportados.
    """
    if store is None:
        settings = load_settings()
        store = SecurityStore.from_url(
            settings.store.url,
            socket_timeout=settings.store.socket_timeout,
            connect_timeout=settings.store.connect_timeout,
            key_prefix=settings.store.key_prefix,
        )
    repo = EventRepo(store)

    start_time = datetime.now()
    logger.info("Iniciando exportação de eventos de segurança...")

    exported = 0
    offset = 0
    while True:
        batch = repo.list_recent(offset, batch_size)
        if not batch:
            break
        for event in batch:
            out.write(json.dumps(event.to_dict(), ensure_ascii=False) + "\n")
        exported += len(batch)
        offset += batch_size

    elapsed = (datetime.now() - start_time).total_seconds()
    logger.info(f"Exportação concluída: {exported} eventos em {elapsed:.2f}s")
    return exported


if __name__ == "__main__":
    try:
        if len(sys.argv) > 1:
            with open(sys.argv[1], "w", encoding="utf-8") as fh:
                export_events(fh)
        else:
            export_events(sys.stdout)
    except StoreUnavailable as e:
        logger.error(f"Erro ao exportar eventos: {e}")
        sys.exit(1)
