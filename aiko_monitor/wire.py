"""
Empacotamento e assinatura do payload enviado para a ingestão
"""
import gzip
import hashlib
import hmac
import json

from .event import Event


def serialize_event(event: Event) -> bytes:
    """Serializa o evento como JSON compacto terminado em newline"""
    return (json.dumps(event.to_dict(), separators=(',', ':'), ensure_ascii=False, allow_nan=False) + "\n").encode('utf-8')


def gzip_event(event: Event) -> bytes:
    """JSON + gzip do evento (mtime fixo para o payload ser reprodutível)"""
    return gzip.compress(serialize_event(event), mtime=0)


def sign(secret: bytes, body: bytes) -> str:
    """HMAC-SHA256 do body com o segredo bruto, em hex"""
    return hmac.new(secret, body, hashlib.sha256).hexdigest()
