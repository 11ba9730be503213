"""
Adapters de captura para aplicações ASGI e WSGI
Montam um Event por request a partir da request/response reais e enfileiram no Monitor
"""
import io
import time
from http import HTTPStatus
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import structlog

from .codec import canonical_headers, decode_response_body, parse_json_body
from .endpoint import endpoint_from_url
from .event import BodyValue, Event
from .monitor import Monitor
from .version import VERSION_HEADER, version_header_value

logger = structlog.get_logger(__name__)

# Path já decodificado pelo servidor: "%" literal precisa ser escapado
_URI_SAFE = "/:@!$&'()*+,;=-._~"


def _reason_phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return HTTPStatus.INTERNAL_SERVER_ERROR.phrase


def _force_error_status(status_code: Optional[int]) -> int:
    if status_code is None or status_code < 500:
        return 500
    return status_code


def _response_body(
    raw: bytes,
    headers: Dict[str, str],
    status_code: int,
    error: Optional[BaseException],
) -> BodyValue:
    if error is not None:
        return {"error": str(error)}
    if not raw and status_code >= 500:
        return {"error": _reason_phrase(status_code)}
    return decode_response_body(raw, headers)


def build_event(
    *,
    method: str,
    request_uri: str,
    request_headers: Any,
    request_body: bytes,
    response_headers: Any,
    response_body: bytes,
    status_code: Optional[int],
    started_at: float,
    error: Optional[BaseException] = None,
) -> Event:
    """Monta o evento seguindo o contrato comum dos adapters"""
    req_headers = canonical_headers(request_headers)
    req_headers[VERSION_HEADER] = version_header_value()
    res_headers = canonical_headers(response_headers)

    if error is not None:
        status_code = _force_error_status(status_code)
    elif status_code is None:
        status_code = 200

    return Event(
        url=request_uri,
        endpoint=endpoint_from_url(request_uri),
        method=method.upper(),
        status_code=status_code,
        request_headers=req_headers,
        request_body=parse_json_body(request_body),
        response_headers=res_headers,
        response_body=_response_body(response_body, res_headers, status_code, error),
        duration_ms=int((time.perf_counter() - started_at) * 1000),
    )


def _record(monitor: Monitor, **kwargs):
    # A telemetria nunca pode derrubar a request instrumentada
    try:
        monitor.enqueue(build_event(**kwargs))
    except Exception as e:
        logger.error("Erro ao montar evento da request", error=str(e))


class MonitorMiddleware:
    """
    Middleware ASGI (FastAPI, Starlette ou qualquer app ASGI).

    Uso:
        app.add_middleware(MonitorMiddleware, monitor=monitor)

    O body da request é lido por inteiro e reentregue ao app; a response é
    repassada sem alteração enquanto status, headers e body são copiados.
    Exceções do app são registradas como erro 5xx e propagadas.
    """

    def __init__(self, app, monitor: Monitor):
        self.app = app
        self.monitor = monitor

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or self.monitor is None or not self.monitor.enabled:
            return await self.app(scope, receive, send)

        started_at = time.perf_counter()

        body_chunks: List[bytes] = []
        last_message = None
        while True:
            last_message = await receive()
            if last_message["type"] != "http.request":
                break
            body_chunks.append(last_message.get("body", b"") or b"")
            if not last_message.get("more_body", False):
                break
        request_body = b"".join(body_chunks)

        replayed = False

        async def _replay_receive():
            nonlocal replayed
            if not replayed:
                replayed = True
                if last_message["type"] == "http.request":
                    return {"type": "http.request", "body": request_body, "more_body": False}
                return last_message
            return await receive()

        response = {"status": None, "headers": [], "body": []}

        async def _send_wrapper(message):
            if message["type"] == "http.response.start":
                response["status"] = message.get("status")
                response["headers"] = message.get("headers") or []
            elif message["type"] == "http.response.body":
                body = message.get("body", b"") or b""
                if body:
                    response["body"].append(body)
            await send(message)

        error = None
        try:
            await self.app(scope, _replay_receive, _send_wrapper)
        except Exception as e:
            error = e
            raise
        finally:
            _record(
                self.monitor,
                method=scope.get("method", "GET"),
                request_uri=self._request_uri(scope),
                request_headers=scope.get("headers") or [],
                request_body=request_body,
                response_headers=response["headers"],
                response_body=b"".join(response["body"]),
                status_code=response["status"],
                started_at=started_at,
                error=error,
            )

    @staticmethod
    def _request_uri(scope) -> str:
        raw_path = scope.get("raw_path")
        if raw_path:
            path = raw_path.decode("latin-1")
        else:
            path = quote(scope.get("root_path", "") + scope.get("path", ""), safe=_URI_SAFE)
        query = (scope.get("query_string") or b"").decode("latin-1")
        return f"{path}?{query}" if query else path


class WSGIMonitorMiddleware:
    """
    Middleware WSGI (Flask, Django, Falcon ou qualquer app WSGI).

    A response é consumida por inteiro antes de ser devolvida ao servidor, já
    que o evento só é montado depois que o handler termina.
    """

    def __init__(self, app, monitor: Monitor):
        self.app = app
        self.monitor = monitor

    def __call__(self, environ, start_response):
        if self.monitor is None or not self.monitor.enabled:
            return self.app(environ, start_response)

        started_at = time.perf_counter()
        request_body = self._read_body(environ)
        environ["wsgi.input"] = io.BytesIO(request_body)

        response = {"status": None, "headers": []}
        chunks: List[bytes] = []

        def _start_response(status, headers, exc_info=None):
            response["status"] = int(status.split(" ", 1)[0])
            response["headers"] = list(headers)
            write = start_response(status, headers, exc_info)

            def _write(data):
                chunks.append(data)
                return write(data)

            return _write

        error = None
        try:
            result = self.app(environ, _start_response)
            try:
                for chunk in result:
                    if chunk:
                        chunks.append(chunk)
            finally:
                if hasattr(result, "close"):
                    result.close()
        except Exception as e:
            error = e
            raise
        finally:
            _record(
                self.monitor,
                method=environ.get("REQUEST_METHOD", "GET"),
                request_uri=self._request_uri(environ),
                request_headers=self._request_headers(environ),
                request_body=request_body,
                response_headers=response["headers"],
                response_body=b"".join(chunks),
                status_code=response["status"],
                started_at=started_at,
                error=error,
            )

        return chunks

    @staticmethod
    def _read_body(environ) -> bytes:
        try:
            length = int(environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            length = 0
        stream = environ.get("wsgi.input")
        if stream is None or length <= 0:
            return b""
        return stream.read(length)

    @staticmethod
    def _request_headers(environ) -> List[tuple]:
        headers = []
        for key, value in environ.items():
            if key.startswith("HTTP_"):
                headers.append((key[5:].replace("_", "-").lower(), value))
            elif key in ("CONTENT_TYPE", "CONTENT_LENGTH") and value:
                headers.append((key.replace("_", "-").lower(), value))
        return headers

    @staticmethod
    def _request_uri(environ) -> str:
        raw_uri = environ.get("RAW_URI") or environ.get("REQUEST_URI")
        if raw_uri:
            return raw_uri
        path = environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")
        # PEP 3333: PATH_INFO chega como bytes decodificados em latin-1
        path = quote(path.encode("latin-1"), safe=_URI_SAFE) or "/"
        query = environ.get("QUERY_STRING", "")
        return f"{path}?{query}" if query else path
