"""
Módulo de métricas do pipeline de eventos
Contadores Prometheus para fila, descartes e envios
"""
import time
from typing import Optional

from prometheus_client import Counter, Gauge, Histogram

# Métricas da fila
EVENTS_ENQUEUED = Counter('aiko_monitor_events_enqueued_total', 'Events accepted into the queue')
EVENTS_DROPPED = Counter('aiko_monitor_events_dropped_total', 'Events dropped before delivery', ['reason'])
QUEUE_SIZE = Gauge('aiko_monitor_queue_size', 'Current size of the event queue')

# Métricas de envio
SENDS_TOTAL = Counter('aiko_monitor_sends_total', 'Event deliveries by final outcome', ['outcome'])
SEND_ATTEMPTS = Counter('aiko_monitor_send_attempts_total', 'HTTP attempts made against the ingest endpoint')
SEND_LATENCY = Histogram('aiko_monitor_send_seconds', 'Time spent delivering one event, retries included')


class PerformanceTimer:
    """Context manager para medir tempo de execução"""

    def __init__(self, histogram: Optional[Histogram] = None):
        self.histogram = histogram
        self.start_time = None
        self.end_time = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = time.perf_counter()
        if self.histogram is not None:
            self.histogram.observe(self.duration)

    @property
    def duration(self) -> float:
        """Retorna a duração em segundos"""
        if self.start_time is not None and self.end_time is not None:
            return self.end_time - self.start_time
        return 0.0
