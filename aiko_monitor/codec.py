"""
Canonicalização de headers e decodificação de bodies
Converte headers e payloads brutos capturados pelos adapters no formato do evento
"""
import base64
import gzip
import json
import zlib
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

import structlog

from .event import BodyValue

logger = structlog.get_logger(__name__)

HeaderPairs = Iterable[Tuple[Union[str, bytes], Union[str, bytes]]]


def _to_text(value: Union[str, bytes]) -> str:
    if isinstance(value, (bytes, bytearray)):
        # Headers HTTP são latin-1 no wire (ASGI/WSGI seguem isso)
        return bytes(value).decode('latin-1')
    return str(value)


def _iter_header_values(headers: Any):
    """Itera pares (chave, lista de valores) de qualquer coleção de headers"""
    if hasattr(headers, 'multi_items'):
        # starlette.datastructures.Headers
        pairs = headers.multi_items()
    elif isinstance(headers, Mapping):
        pairs = headers.items()
    else:
        pairs = headers

    for key, values in pairs:
        if isinstance(values, (list, tuple)):
            yield key, list(values)
        elif values is None:
            yield key, []
        else:
            yield key, [values]


def canonical_headers(headers: Any) -> Dict[str, str]:
    """
    Achata uma coleção de headers multi-valorada em um mapa de valor único.

    Aceita mapping de listas, lista de pares (formato ASGI/WSGI) ou objetos
    com `multi_items()`. Chaves viram minúsculas e múltiplos valores da mesma
    chave são unidos com ", ".
    """
    if not headers:
        return {}

    collected: Dict[str, list] = {}
    for key, values in _iter_header_values(headers):
        if not values:
            continue
        key_lower = _to_text(key).lower()
        collected.setdefault(key_lower, []).extend(_to_text(v) for v in values)

    return {key: ", ".join(values) for key, values in collected.items()}


def canonical_header_map(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Normaliza um mapa já achatado; idempotente sob merges repetidos"""
    if not headers:
        return {}

    normalized: Dict[str, str] = {}
    for key, value in headers.items():
        if not key:
            continue
        key_lower = key.lower()
        value = "" if value is None else str(value)

        existing = normalized.get(key_lower)
        if existing is None:
            normalized[key_lower] = value
        elif existing == "":
            normalized[key_lower] = value
        elif value == "" or value == existing:
            continue
        else:
            normalized[key_lower] = f"{existing}, {value}"

    return normalized


def _reject_constant(token: str):
    raise ValueError(f"token JSON inválido: {token}")


def _try_parse_json(raw: bytes) -> Tuple[Any, bool]:
    # NaN e Infinity não são JSON válido
    try:
        return json.loads(raw, parse_constant=_reject_constant), True
    except (ValueError, TypeError):
        return None, False


def parse_json_body(raw: Optional[Union[bytes, str]]) -> BodyValue:
    """Parse best-effort de body JSON: vazio vira {}, inválido vira a string bruta"""
    if not raw:
        return {}

    parsed, ok = _try_parse_json(raw)
    if ok:
        return parsed

    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw).decode('utf-8', errors='replace')
    return raw


def decode_with_encoding(raw: bytes, encoding: str) -> bytes:
    """Descomprime conforme content-encoding; em caso de falha mantém os bytes brutos"""
    encoding_lower = (encoding or "").lower()

    if 'gzip' in encoding_lower:
        try:
            return gzip.decompress(raw)
        except (OSError, EOFError, zlib.error) as e:
            logger.debug("Falha ao descomprimir gzip", error=str(e))

    if 'deflate' in encoding_lower:
        # Tentar zlib primeiro e depois deflate cru
        for wbits in (zlib.MAX_WBITS, -zlib.MAX_WBITS):
            try:
                return zlib.decompress(raw, wbits)
            except zlib.error:
                continue
        logger.debug("Falha ao descomprimir deflate")

    return raw


def _base64_wrap(data: bytes) -> Dict[str, str]:
    return {"base64": base64.b64encode(data).decode('ascii')}


def _utf8_or_none(data: bytes) -> Optional[str]:
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError:
        return None


def decode_response_body(raw: Optional[bytes], headers: Optional[Mapping[str, str]]) -> BodyValue:
    """Decodifica o body da response baseado em content-encoding e content-type"""
    if not raw:
        return {}

    headers = headers or {}
    decoded = decode_with_encoding(bytes(raw), headers.get('content-encoding', ''))
    content_type = (headers.get('content-type') or '').lower()

    if 'application/json' in content_type:
        parsed, ok = _try_parse_json(decoded)
        if ok:
            return parsed
        return decoded.decode('utf-8', errors='replace')

    if content_type.startswith('text/') or 'xml' in content_type or 'html' in content_type:
        return decoded.decode('utf-8', errors='replace')

    if content_type:
        parsed, ok = _try_parse_json(decoded)
        if ok:
            return parsed
        return _base64_wrap(decoded)

    # Sem content-type: JSON, depois texto UTF-8, depois base64
    parsed, ok = _try_parse_json(decoded)
    if ok:
        return parsed
    text = _utf8_or_none(decoded)
    if text is not None:
        return text
    return _base64_wrap(decoded)
