"""
Envio de eventos para o endpoint de ingestão
Faz a entrega de um evento com retries limitados, backoff com jitter e classificação de erros
"""
import asyncio
import concurrent.futures
import errno
import random
import socket
import threading
from typing import Any, Dict, Iterator, Optional

import httpx
import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    stop_when_event_set,
)
from tenacity.wait import wait_base

from .event import Event
from .metrics import SEND_ATTEMPTS, SEND_LATENCY, SENDS_TOTAL, PerformanceTimer
from .redactor import DataRedactor
from .wire import gzip_event, sign

logger = structlog.get_logger(__name__)

MAX_ATTEMPTS = 3
BASE_BACKOFF = 0.25
MAX_BACKOFF = 2.0
REQUEST_TIMEOUT = 10.0
JITTER_RANGE = (0.8, 1.2)

# Erros de conexão de baixo nível que valem nova tentativa
RETRYABLE_ERRNOS = frozenset({
    errno.ECONNREFUSED,
    errno.ECONNRESET,
    errno.ECONNABORTED,
    errno.EHOSTUNREACH,
    errno.ENETUNREACH,
})

_TIMEOUT_ERRORS = (
    httpx.TimeoutException,
    TimeoutError,
    asyncio.CancelledError,
    concurrent.futures.CancelledError,
)

_CONNECTION_ERRORS = (
    ConnectionRefusedError,
    ConnectionResetError,
    ConnectionAbortedError,
)


class SendAborted(Exception):
    """Envio interrompido porque o shutdown abandonou os pendentes"""


def is_retryable_status(status_code: int) -> bool:
    """408, 429 e qualquer 5xx justificam nova tentativa"""
    if status_code in (408, 429):
        return True
    return 500 <= status_code < 600


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        # Só causas explícitas; o __context__ implícito pode ser um erro já tratado
        current = current.__cause__


def is_retryable_error(exc: Optional[BaseException]) -> bool:
    """
    Classifica erros de transporte como retentáveis ou terminais.

    Percorre a cadeia de causas (httpx encadeia o erro do httpcore, que
    encadeia o OSError original). Timeouts, cancelamentos, DNS temporário e
    conexões recusadas/resetadas/abortadas/inalcançáveis são retentáveis.
    Todo o resto é terminal.
    """
    if exc is None:
        return False

    for err in _exception_chain(exc):
        if isinstance(err, _TIMEOUT_ERRORS):
            return True

        if isinstance(err, socket.gaierror):
            # Só falha temporária de resolução vale retry
            return err.errno == socket.EAI_AGAIN

        if isinstance(err, _CONNECTION_ERRORS):
            return True

        if isinstance(err, OSError) and err.errno in RETRYABLE_ERRNOS:
            return True

    return False


def _is_retryable_response(response: Optional[httpx.Response]) -> bool:
    return response is not None and is_retryable_status(response.status_code)


class wait_jittered_backoff(wait_base):
    """Backoff exponencial (base dobrando até o teto) com jitter multiplicativo"""

    def __init__(self, rng: random.Random, base: Optional[float] = None, cap: Optional[float] = None):
        self.rng = rng
        self.base = BASE_BACKOFF if base is None else base
        self.cap = MAX_BACKOFF if cap is None else cap

    def __call__(self, retry_state: RetryCallState) -> float:
        backoff = min(self.base * (2 ** (retry_state.attempt_number - 1)), self.cap)
        low, high = JITTER_RANGE
        return backoff * self.rng.uniform(low, high)


class EventSender:
    """Entrega um evento por chamada; nunca propaga erros para quem chamou"""

    def __init__(
        self,
        client: httpx.Client,
        endpoint: str,
        project_key: str,
        secret: bytes,
        redactor: Optional[DataRedactor] = None,
        rng: Optional[random.Random] = None,
        abort_event: Optional[threading.Event] = None,
        log: Optional[Any] = None,
        request_timeout: Optional[float] = None,
    ):
        self.client = client
        self.endpoint = endpoint
        self.project_key = project_key
        self.secret = secret
        self.redactor = redactor or DataRedactor()
        self.rng = rng or random.Random()
        self.abort_event = abort_event or threading.Event()
        self.logger = log or logger
        # Vale o menor entre o timeout fixo por tentativa e o do cliente
        self.request_timeout = (
            REQUEST_TIMEOUT if request_timeout is None else min(REQUEST_TIMEOUT, request_timeout)
        )

    def build_headers(self, signature: str) -> Dict[str, str]:
        """Headers do protocolo de ingestão"""
        return {
            'Content-Type': 'application/json',
            'Content-Encoding': 'gzip',
            'X-Project-Key': self.project_key,
            'X-Signature': signature,
        }

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(MAX_ATTEMPTS) | stop_when_event_set(self.abort_event),
            wait=wait_jittered_backoff(self.rng),
            retry=retry_if_exception(is_retryable_error) | retry_if_result(_is_retryable_response),
            sleep=self.abort_event.wait,
            before_sleep=self._log_retry,
            retry_error_callback=self._give_up,
        )

    def _post_once(self, payload: bytes, headers: Dict[str, str]) -> httpx.Response:
        if self.abort_event.is_set():
            raise SendAborted("envio abandonado no shutdown")

        SEND_ATTEMPTS.inc()
        return self.client.post(
            self.endpoint,
            content=payload,
            headers=headers,
            timeout=self.request_timeout,
        )

    def _log_retry(self, retry_state: RetryCallState):
        outcome = retry_state.outcome
        if outcome.failed:
            reason = repr(outcome.exception())
        else:
            reason = f"HTTP {outcome.result().status_code}"
        self.logger.debug(
            "Falha retentável no envio, aguardando backoff",
            attempt=retry_state.attempt_number,
            reason=reason,
            sleep=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
        )

    def _give_up(self, retry_state: RetryCallState) -> Optional[httpx.Response]:
        outcome = retry_state.outcome
        if outcome.failed:
            self.logger.warning(
                "Tentativas esgotadas, descartando evento",
                attempts=retry_state.attempt_number,
                error=repr(outcome.exception()),
            )
            return None
        response = outcome.result()
        self.logger.warning(
            "Tentativas esgotadas, descartando evento",
            attempts=retry_state.attempt_number,
            status_code=response.status_code,
        )
        return response

    def send(self, event: Event) -> bool:
        """Redige, empacota, assina e envia o evento; retorna se foi entregue"""
        try:
            sanitized = self.redactor.redact_event(event)
            payload = gzip_event(sanitized)
        except (TypeError, ValueError) as e:
            self.logger.error("Erro ao serializar evento, descartando", error=str(e), endpoint=event.endpoint)
            SENDS_TOTAL.labels(outcome='encode_error').inc()
            return False

        headers = self.build_headers(sign(self.secret, payload))

        with PerformanceTimer(SEND_LATENCY) as timer:
            try:
                response = self._retrying()(self._post_once, payload, headers)
            except SendAborted:
                SENDS_TOTAL.labels(outcome='aborted').inc()
                return False
            except Exception as e:
                # Erro terminal (construção da request, erro não classificado)
                self.logger.warning("Erro terminal no envio, descartando evento", error=repr(e))
                SENDS_TOTAL.labels(outcome='error').inc()
                return False

        if response is None:
            SENDS_TOTAL.labels(outcome='error').inc()
            return False

        if 200 <= response.status_code < 300:
            self.logger.debug(
                "Evento entregue",
                endpoint=event.endpoint,
                status_code=response.status_code,
                duration=round(timer.duration, 3),
            )
            SENDS_TOTAL.labels(outcome='delivered').inc()
            return True

        if not is_retryable_status(response.status_code):
            self.logger.warning(
                "Ingestão rejeitou o evento",
                status_code=response.status_code,
                endpoint=event.endpoint,
            )
        SENDS_TOTAL.labels(outcome='rejected').inc()
        return False
