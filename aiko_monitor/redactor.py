"""
Módulo de redação de dados sensíveis
Mascara chaves sensíveis e padrões de PII em bodies e headers antes do envio
"""
import base64
import dataclasses
import re
from typing import Any, Dict, Iterable, Optional

from .event import BodyValue, Event

REDACTION_MASK = "[REDACTED]"

# Chaves cujo valor é sempre substituído pela máscara (comparação case-insensitive)
SENSITIVE_KEYS = frozenset({
    "password",
    "secret",
    "token",
    "api_key",
    "authorization",
    "cookie",
    "email",
    "phonenumber",
    "ssn",
    "creditcard",
    "set-cookie",
    "ip",
    # Headers de encaminhamento de IP do cliente
    "x-forwarded-for",
    "x-forwarded-ip",
    "x-real-ip",
    "cf-connecting-ip",
    "true-client-ip",
    "forwarded",
    "remote-addr",
    "client-ip",
})


class DataRedactor:
    """Redator de dados sensíveis para eventos do monitor"""

    # Aplicados nesta ordem sobre a string inteira
    PII_PATTERNS = (
        ('email', r'[\w.-]+@[\w.-]+\.[A-Za-z]{2,}'),
        ('ipv4', r'\b(?:\d{1,3}\.){3}\d{1,3}\b'),
        ('ipv6', r'\b(?:[A-F0-9]{1,4}:){2,7}[A-F0-9]{1,4}\b'),
    )

    def __init__(self, sensitive_keys: Optional[Iterable[str]] = None, mask: str = REDACTION_MASK):
        keys = SENSITIVE_KEYS if sensitive_keys is None else sensitive_keys
        self.sensitive_keys = frozenset(k.lower() for k in keys)
        self.mask = mask

        # Compilar padrões regex para melhor performance
        self.compiled_patterns = [
            (name, re.compile(pattern, re.ASCII | (re.IGNORECASE if name == 'ipv6' else 0)))
            for name, pattern in self.PII_PATTERNS
        ]

    def is_sensitive_key(self, key: Any) -> bool:
        """Verifica se a chave está no conjunto sensível"""
        return str(key).lower() in self.sensitive_keys

    def redact_value(self, value: BodyValue) -> Any:
        """Redige recursivamente uma árvore de valores"""
        if isinstance(value, dict):
            redacted = {}
            for key, item in value.items():
                if self.is_sensitive_key(key):
                    redacted[key] = self.mask
                else:
                    redacted[key] = self.redact_value(item)
            return redacted

        elif isinstance(value, (list, tuple)):
            return [self.redact_value(item) for item in value]

        elif isinstance(value, str):
            return self.redact_string(value)

        elif isinstance(value, (bytes, bytearray)):
            # Binário nunca é inspecionado, apenas marcado
            return {"base64": base64.b64encode(bytes(value)).decode('ascii')}

        else:
            return value

    def redact_string(self, value: str) -> str:
        """Substitui tokens de email, IPv4 e IPv6 pela máscara"""
        if not isinstance(value, str):
            return value

        redacted = value
        for _, pattern in self.compiled_patterns:
            redacted = pattern.sub(self.mask, redacted)
        return redacted

    def redact_headers(self, headers: Optional[Dict[str, str]]) -> Dict[str, str]:
        """Redige headers: chave sensível mascara tudo, os demais só por padrão"""
        if not headers:
            return {}

        redacted = {}
        for key, value in headers.items():
            key_lower = key.lower()
            if key_lower in self.sensitive_keys:
                redacted[key_lower] = self.mask
            else:
                redacted[key_lower] = self.redact_string(value)
        return redacted

    def redact_event(self, event: Event) -> Event:
        """Deriva uma cópia redigida do evento"""
        return dataclasses.replace(
            event,
            request_headers=self.redact_headers(event.request_headers),
            request_body=self.redact_value(event.request_body),
            response_headers=self.redact_headers(event.response_headers),
            response_body=self.redact_value(event.response_body),
        )


def create_redactor(sensitive_keys: Optional[Iterable[str]] = None) -> DataRedactor:
    """Factory function para criar redator"""
    return DataRedactor(sensitive_keys)


_default_redactor = DataRedactor()


def redact_value(value: BodyValue) -> Any:
    return _default_redactor.redact_value(value)


def redact_string(value: str) -> str:
    return _default_redactor.redact_string(value)


def redact_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    return _default_redactor.redact_headers(headers)


def redact_event(event: Event) -> Event:
    return _default_redactor.redact_event(event)
