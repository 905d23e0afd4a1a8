"""Worker de persistência em background.

Uma única thread drena uma fila limitada de escritas para o store. Quem
submete nunca espera: com a fila cheia a escrita é descartada e registada,
o que limita a memória usada quando o store está lento ou em baixo.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from queue import Empty, Full, Queue
from typing import Callable, List, Optional

from bastion.utils.logs import get_logger

logger = get_logger(__name__)

Job = Callable[[], object]

_STOP = object()


@dataclass
class _PeriodicTask:
    interval: float
    fn: Job
    description: str
    next_run: float = field(default=0.0)


class BackgroundWriter:
    def __init__(self, queue_size: int = 10000, *, name: str = "bastion-writer", tick: float = 0.5) -> None:
        self._queue: "Queue[object]" = Queue(maxsize=max(1, queue_size))
        self._name = name
        self._tick = tick
        self._thread: Optional[threading.Thread] = None
        self._periodic: List[_PeriodicTask] = []
        self._lock = threading.Lock()
        self.completed = 0
        self.failed = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()
        logger.debug("Writer %s iniciado", self._name)

    def submit(self, job: Job, description: str = "write") -> bool:
        try:
            self._queue.put_nowait((job, description))
        except Full:
            with self._lock:
                self.dropped += 1
            logger.warning("Fila de persistência cheia; descartando %s", description)
            return False
        return True

    def every(self, interval: float, fn: Job, description: str) -> None:
        """Agenda ``fn`` a cada ``interval`` segundos na thread do writer."""

        if interval <= 0:
            return
        with self._lock:
            self._periodic.append(
                _PeriodicTask(interval=interval, fn=fn, description=description,
                              next_run=time.monotonic() + interval)
            )

    def flush(self, timeout: float = 5.0) -> bool:
        """Espera até que tudo o que foi submetido antes desta chamada esteja escrito."""

        if not self.running:
            self._drain()
            return True
        done = threading.Event()
        try:
            self._queue.put((done.set, "flush marker"), timeout=timeout)
        except Full:
            return False
        return done.wait(timeout)

    def stop(self, timeout: float = 5.0) -> None:
        thread = self._thread
        if thread is None:
            self._drain()
            return
        try:
            self._queue.put(_STOP, timeout=timeout)
        except Full:
            logger.error("Não foi possível sinalizar paragem do writer %s (fila cheia)", self._name)
        thread.join(timeout)
        if thread.is_alive():
            logger.error("Writer %s não terminou em %.1fs; %d escritas pendentes", self._name, timeout, self.pending)
        self._thread = None

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------
    def _run(self) -> None:
        while True:
            self._run_due_tasks()
            try:
                item = self._queue.get(timeout=self._tick)
            except Empty:
                continue
            if item is _STOP:
                self._drain()
                return
            self._execute(*item)

    def _drain(self) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except Empty:
                return
            if item is _STOP:
                continue
            self._execute(*item)

    def _run_due_tasks(self) -> None:
        now = time.monotonic()
        with self._lock:
            due = [task for task in self._periodic if task.next_run <= now]
            for task in due:
                task.next_run = now + task.interval
        for task in due:
            self._execute(task.fn, task.description)

    def _execute(self, job: Job, description: str) -> None:
        try:
            job()
        except Exception:
            with self._lock:
                self.failed += 1
            logger.exception("Falha ao executar escrita em background: %s", description)
        else:
            with self._lock:
                self.completed += 1
