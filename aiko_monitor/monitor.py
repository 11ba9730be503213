"""
Núcleo do monitor
Fila limitada, loop de despacho e pool de envios concorrentes com shutdown drenando os pendentes
"""
import queue
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

import httpx
import structlog

from .config import SHUTDOWN_ABANDON, MonitorSettings
from .event import Event
from .metrics import EVENTS_DROPPED, EVENTS_ENQUEUED, QUEUE_SIZE
from .redactor import DataRedactor
from .sender import EventSender

logger = structlog.get_logger(__name__)

# Intervalo em que o loop de despacho reavalia o sinal de fechamento
DISPATCH_POLL_INTERVAL = 0.05


def _remaining(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    return max(0.0, deadline - time.monotonic())


class Monitor:
    """
    Captura eventos HTTP e os entrega em background para a ingestão.

    `enqueue` nunca bloqueia: com a fila cheia o evento é descartado e
    contabilizado. Um único thread de despacho consome a fila e submete cada
    evento a um pool de `max_concurrent_sends` workers, limitado por um
    semáforo. `shutdown` é idempotente e drena o que já estava na fila.
    """

    def __init__(self, settings: Optional[MonitorSettings] = None, seed: Optional[int] = None, **kwargs):
        self.settings = settings if settings is not None else MonitorSettings(**kwargs)
        self.logger = self.settings.logger or logger

        self.stats = {
            'enqueued': 0,
            'dropped': 0,
            'sent': 0,
            'failed': 0,
            'errors': 0,
        }
        self._stats_lock = threading.Lock()

        self._closed = False
        self._close_lock = threading.Lock()
        self._closing = threading.Event()
        self._abort = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._shutdown_result: Optional[bool] = None

        self._enabled = self.settings.enabled
        self._queue: Optional[queue.Queue] = None
        self._dispatcher: Optional[threading.Thread] = None

        if not self._enabled:
            return

        self._rng = random.Random(seed)

        self._owns_client = self.settings.http_client is None
        self._client = self.settings.http_client or httpx.Client(
            timeout=httpx.Timeout(self.settings.http_timeout),
            limits=httpx.Limits(
                max_connections=self.settings.max_concurrent_sends,
                max_keepalive_connections=self.settings.max_concurrent_sends,
            ),
        )

        self._queue = queue.Queue(maxsize=self.settings.queue_size)
        self._slots = threading.BoundedSemaphore(self.settings.max_concurrent_sends)
        self._in_flight = 0
        self._in_flight_cond = threading.Condition()
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.max_concurrent_sends,
            thread_name_prefix="aiko-monitor-send",
        )

        self._sender = EventSender(
            client=self._client,
            endpoint=self.settings.endpoint,
            project_key=self.settings.project_key,
            secret=self.settings.secret_bytes(),
            redactor=DataRedactor(),
            rng=self._rng,
            abort_event=self._abort,
            log=self.logger,
            request_timeout=self.settings.http_timeout,
        )

        self._dispatcher = threading.Thread(
            target=self._dispatch_loop,
            name="aiko-monitor-dispatcher",
            daemon=True,
        )
        self._dispatcher.start()

        self.logger.info(
            "Monitor iniciado",
            endpoint=self.settings.endpoint,
            queue_size=self.settings.queue_size,
            max_concurrent_sends=self.settings.max_concurrent_sends,
        )

    @classmethod
    def noop(cls) -> 'Monitor':
        """Monitor desabilitado: aceita chamadas e não faz nada"""
        return cls(MonitorSettings(enabled=False))

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def closed(self) -> bool:
        return self._closed

    def _count(self, key: str, amount: int = 1):
        with self._stats_lock:
            self.stats[key] += amount

    def enqueue(self, event: Event) -> None:
        """Coloca o evento na fila sem bloquear; descarta se a fila estiver cheia"""
        if not self._enabled or event is None:
            return

        with self._close_lock:
            if self._closed:
                self.logger.debug("Monitor encerrado, evento ignorado", endpoint=event.endpoint)
                return
            try:
                self._queue.put_nowait(event)
            except queue.Full:
                self.logger.warning(
                    "Fila de eventos cheia, descartando evento",
                    endpoint=event.endpoint,
                    queue_size=self.settings.queue_size,
                )
                self._count('dropped')
                EVENTS_DROPPED.labels(reason='queue_full').inc()
                return

        self._count('enqueued')
        EVENTS_ENQUEUED.inc()
        QUEUE_SIZE.set(self._queue.qsize())

    def _dispatch_loop(self):
        """Consome a fila até o fechamento; então drena o restante e termina"""
        while True:
            try:
                event = self._queue.get(timeout=DISPATCH_POLL_INTERVAL)
            except queue.Empty:
                if self._closing.is_set():
                    break
                continue
            self._launch(event)

        # Eventos que entraram entre o último get e o sinal de fechamento
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                break
            self._launch(event)

        QUEUE_SIZE.set(0)
        self.logger.debug("Loop de despacho finalizado")

    def _launch(self, event: Event):
        QUEUE_SIZE.set(self._queue.qsize())

        # Bloqueia o loop de despacho (nunca quem chamou enqueue) até haver vaga
        while not self._slots.acquire(timeout=DISPATCH_POLL_INTERVAL):
            if self._abort.is_set():
                break
        else:
            with self._in_flight_cond:
                self._in_flight += 1
            try:
                self._executor.submit(self._run_send, event)
            except RuntimeError as e:
                # Interpretador encerrando: o pool não aceita novos envios
                self._finish_send()
                self.logger.warning("Pool de envio indisponível, descartando evento", error=str(e))
                self._count('dropped')
                EVENTS_DROPPED.labels(reason='shutdown').inc()
            return

        self._count('dropped')
        EVENTS_DROPPED.labels(reason='shutdown').inc()

    def _run_send(self, event: Event):
        try:
            if self._sender.send(event):
                self._count('sent')
            else:
                self._count('failed')
        except Exception as e:
            self.logger.error("Erro inesperado no worker de envio", error=str(e), endpoint=event.endpoint)
            self._count('errors')
        finally:
            self._finish_send()

    def _finish_send(self):
        self._slots.release()
        with self._in_flight_cond:
            self._in_flight -= 1
            self._in_flight_cond.notify_all()

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Encerra o monitor drenando a fila e aguardando envios em andamento.

        Retorna True quando tudo foi drenado dentro do prazo e False quando o
        prazo expirou. Chamadas seguintes retornam o mesmo resultado.
        """
        with self._shutdown_lock:
            if self._shutdown_result is None:
                self._shutdown_result = self._shutdown(timeout)
            return self._shutdown_result

    def _shutdown(self, timeout: Optional[float]) -> bool:
        with self._close_lock:
            self._closed = True

        if not self._enabled:
            return True

        deadline = None if timeout is None else time.monotonic() + timeout
        self._closing.set()

        self._dispatcher.join(_remaining(deadline))
        drained = not self._dispatcher.is_alive()
        if drained:
            with self._in_flight_cond:
                drained = self._in_flight_cond.wait_for(
                    lambda: self._in_flight == 0,
                    timeout=_remaining(deadline),
                )

        if drained:
            self._release_resources()
            self.logger.info("Monitor encerrado", **self.get_stats())
            return True

        self.logger.warning(
            "Prazo de shutdown expirou com envios pendentes",
            queued=self._queue.qsize(),
            in_flight=self._in_flight,
            policy=self.settings.shutdown_policy,
        )
        if self.settings.shutdown_policy == SHUTDOWN_ABANDON:
            # Interrompe retries e backoffs; o loop descarta o que ainda está na fila
            self._abort.set()

        # Pool e cliente próprio são liberados quando os pendentes terminarem
        threading.Thread(
            target=self._release_when_idle,
            name="aiko-monitor-release",
            daemon=True,
        ).start()
        return False

    def _release_resources(self):
        self._executor.shutdown(wait=True)
        if self._owns_client:
            self._client.close()

    def _release_when_idle(self):
        self._dispatcher.join()
        with self._in_flight_cond:
            self._in_flight_cond.wait_for(lambda: self._in_flight == 0)
        self._release_resources()
        self.logger.info("Recursos do monitor liberados após shutdown expirado", **self.get_stats())

    def close(self) -> bool:
        """Shutdown sem prazo"""
        return self.shutdown(None)

    def get_stats(self) -> Dict[str, Any]:
        """Retorna estatísticas do monitor"""
        with self._stats_lock:
            stats = dict(self.stats)
        stats['enabled'] = self._enabled
        stats['closed'] = self._closed
        stats['queue_size'] = self._queue.qsize() if self._queue is not None else 0
        stats['in_flight'] = self._in_flight if self._enabled else 0
        return stats

    def __enter__(self) -> 'Monitor':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def create_monitor(settings: Optional[MonitorSettings] = None, **kwargs) -> Monitor:
    """Factory function para criar o monitor"""
    return Monitor(settings, **kwargs)
