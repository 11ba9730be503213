#!/usr/bin/env python3
"""
Fixtures compartilhadas: servidor de ingestão simulado e configurações válidas.
"""

import gzip
import hashlib
import hmac
import json
import threading
import time

import httpx
import pytest

from aiko_monitor.config import MonitorSettings, decode_secret

PROJECT_KEY = "pk_92Yb_kCIwRhy06UF-FQShg"
SECRET_KEY = "aNlvpEIXkeEubNgikWXyGnh8LyXa72yZhR9lEmzgHCM"
ALT_PROJECT_KEY = "pk_AAAAAAAAAAAAAAAAAAAAAA"
ALT_SECRET_KEY = "B" * 43
LOCAL_ENDPOINT = "http://localhost:8080/api/monitor/ingest"


class MockIngestServer:
    """
    Ingestão simulada via httpx.MockTransport.

    Verifica a assinatura, descomprime o payload e registra os eventos
    aceitos. `script` define a sequência de respostas: cada item é um status
    HTTP ou uma exceção a ser levantada; esgotado o script, responde 200.
    """

    def __init__(self, secret_key: str = SECRET_KEY, script=None):
        self.secret = decode_secret(secret_key)
        self.script = list(script or [])
        self.requests = []
        self.events = []
        self.bad_signatures = 0
        self.lock = threading.Lock()
        self.gate = threading.Event()
        self.gate.set()
        self.transport = httpx.MockTransport(self.handle)

    def block(self):
        """Faz os envios pararem até `unblock`"""
        self.gate.clear()

    def unblock(self):
        self.gate.set()

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.gate.wait(timeout=10)
        body = request.content

        with self.lock:
            self.requests.append(request)
            step = self.script.pop(0) if self.script else 200

        expected = hmac.new(self.secret, body, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(expected, request.headers.get("x-signature", "")):
            with self.lock:
                self.bad_signatures += 1
            return httpx.Response(401, json={"error": "invalid signature"})

        if isinstance(step, BaseException):
            raise step

        if 200 <= step < 300:
            event = json.loads(gzip.decompress(body))
            with self.lock:
                self.events.append(event)
        return httpx.Response(step)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=self.transport)

    @property
    def attempts(self) -> int:
        with self.lock:
            return len(self.requests)

    def wait_for_events(self, count: int, timeout: float = 5.0) -> bool:
        return wait_until(lambda: len(self.events) >= count, timeout)


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Espera ativa por uma condição; retorna se ela foi atingida"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def make_settings(server: MockIngestServer = None, **overrides) -> MonitorSettings:
    values = {
        "project_key": PROJECT_KEY,
        "secret_key": SECRET_KEY,
        "endpoint": LOCAL_ENDPOINT,
    }
    if server is not None:
        values["http_client"] = server.client()
    values.update(overrides)
    return MonitorSettings(**values)


@pytest.fixture
def ingest_server():
    return MockIngestServer()


@pytest.fixture(autouse=True)
def fast_backoff(monkeypatch):
    """Backoff curto para os testes de retry não dormirem segundos"""
    monkeypatch.setattr("aiko_monitor.sender.BASE_BACKOFF", 0.001)
    monkeypatch.setattr("aiko_monitor.sender.MAX_BACKOFF", 0.004)
