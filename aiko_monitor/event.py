"""
Modelo de evento do monitor
Representa um ciclo request/response observado por um adapter
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

# Variantes possíveis de um body: objeto, array, string, número, bool, null e binário
BodyValue = Union[
    Dict[str, Any],
    List[Any],
    str,
    int,
    float,
    bool,
    None,
    bytes,
    bytearray,
]

# Nomes dos campos no JSON enviado para a ingestão (estáveis)
EVENT_FIELDS = (
    'url',
    'endpoint',
    'method',
    'status_code',
    'request_headers',
    'request_body',
    'response_headers',
    'response_body',
    'duration_ms',
)


@dataclass(frozen=True)
class Event:
    """
    Registro imutável de uma chamada HTTP observada.

    Os mapas de headers sempre têm chaves em minúsculas e bodies ausentes
    são normalizados para um objeto vazio. A cópia redigida é derivada com
    `redact_event`, nunca alterada no lugar.
    """
    url: str
    endpoint: str
    method: str
    status_code: int
    request_headers: Dict[str, str] = field(default_factory=dict)
    request_body: BodyValue = field(default_factory=dict)
    response_headers: Dict[str, str] = field(default_factory=dict)
    response_body: BodyValue = field(default_factory=dict)
    duration_ms: int = 0

    def __post_init__(self):
        # Garantir invariantes mesmo quando o adapter passa None
        if self.request_headers is None:
            object.__setattr__(self, 'request_headers', {})
        if self.response_headers is None:
            object.__setattr__(self, 'response_headers', {})
        if self.request_body is None:
            object.__setattr__(self, 'request_body', {})
        if self.response_body is None:
            object.__setattr__(self, 'response_body', {})

    def to_dict(self) -> Dict[str, Any]:
        """Converte o evento para o formato do wire"""
        return {name: getattr(self, name) for name in EVENT_FIELDS}
