"""
Configurações do Monitor
Valida as credenciais do projeto, o endpoint de ingestão e aplica os defaults
"""
import base64
import binascii
import os
import re
from typing import Any, Dict, Optional

import httpx
import structlog
import yaml
from pydantic import Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)

DEFAULT_ENDPOINT = "https://main.aikocorp.ai/api/monitor/ingest"
STAGING_ENDPOINT = "https://staging.aikocorp.ai/api/monitor/ingest"

DEFAULT_QUEUE_SIZE = 5000
DEFAULT_MAX_CONCURRENT_SENDS = 5
DEFAULT_HTTP_TIMEOUT = 10.0

SECRET_KEY_LENGTH = 43

SHUTDOWN_WAIT = "wait"
SHUTDOWN_ABANDON = "abandon"

PROJECT_KEY_PATTERN = re.compile(r'pk_[A-Za-z0-9_-]{22}')
BASE64URL_PATTERN = re.compile(r'[A-Za-z0-9_-]*')
LOCAL_ENDPOINT_PATTERN = re.compile(r'http://(?:localhost|127\.0\.0\.1|\[::1\]):[0-9]+/api/monitor/ingest')

_SIZE_DEFAULTS = {
    'queue_size': DEFAULT_QUEUE_SIZE,
    'max_concurrent_sends': DEFAULT_MAX_CONCURRENT_SENDS,
}


def decode_secret(secret_key: str) -> bytes:
    """Decodifica o segredo base64url (sem padding) para bytes brutos"""
    # b64decode troca -_ por +/ antes de validar: o alfabeto é checado aqui
    if not BASE64URL_PATTERN.fullmatch(secret_key):
        raise ValueError("decode secret key: caracteres fora do alfabeto base64url")
    padded = secret_key + '=' * (-len(secret_key) % 4)
    try:
        return base64.b64decode(padded, altchars=b'-_', validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"decode secret key: {e}") from e


def is_allowed_endpoint(endpoint: str) -> bool:
    """Endpoint precisa ser produção, staging ou ingestão local"""
    return (
        endpoint in (DEFAULT_ENDPOINT, STAGING_ENDPOINT)
        or LOCAL_ENDPOINT_PATTERN.fullmatch(endpoint) is not None
    )


class MonitorSettings(BaseSettings):
    """Configurações de conexão do monitor (imutáveis após a construção)"""

    model_config = SettingsConfigDict(
        env_prefix="AIKO_MONITOR_",
        case_sensitive=False,
        frozen=True,
        arbitrary_types_allowed=True,
    )

    # Credenciais do projeto
    project_key: str = Field(default="", description="Identificador público do projeto (pk_...)")
    secret_key: str = Field(default="", description="Chave de assinatura base64url (43 caracteres)")

    # Destino
    endpoint: str = Field(default=DEFAULT_ENDPOINT, description="URL de ingestão")
    enabled: bool = Field(default=True, description="Habilitar envio de eventos")

    # Configurações de performance
    queue_size: int = Field(default=DEFAULT_QUEUE_SIZE, description="Capacidade da fila de eventos")
    max_concurrent_sends: int = Field(
        default=DEFAULT_MAX_CONCURRENT_SENDS,
        description="Máximo de envios simultâneos"
    )
    http_timeout: float = Field(default=DEFAULT_HTTP_TIMEOUT, description="Timeout do cliente HTTP em segundos")
    shutdown_policy: str = Field(
        default=SHUTDOWN_WAIT,
        description="O que fazer com envios pendentes quando o prazo do shutdown expira"
    )

    # Configurações de logging
    log_level: str = Field(default="INFO", description="Nível de log")
    log_format: str = Field(default="json", description="Formato do log")

    # Colaboradores injetáveis (não vêm do ambiente)
    http_client: Optional[httpx.Client] = Field(default=None, exclude=True)
    logger: Optional[Any] = Field(default=None, exclude=True)

    @field_validator('endpoint', mode='before')
    @classmethod
    def default_endpoint(cls, v):
        return v or DEFAULT_ENDPOINT

    @field_validator('queue_size', 'max_concurrent_sends')
    @classmethod
    def default_sizes(cls, v, info: ValidationInfo):
        if v <= 0:
            return _SIZE_DEFAULTS[info.field_name]
        return v

    @field_validator('http_timeout')
    @classmethod
    def default_timeout(cls, v):
        return v if v > 0 else DEFAULT_HTTP_TIMEOUT

    @field_validator('shutdown_policy')
    @classmethod
    def validate_shutdown_policy(cls, v):
        v = v.lower()
        if v not in (SHUTDOWN_WAIT, SHUTDOWN_ABANDON):
            raise ValueError(f"shutdown_policy deve ser '{SHUTDOWN_WAIT}' ou '{SHUTDOWN_ABANDON}'")
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level deve ser um de: {valid_levels}')
        return v.upper()

    @model_validator(mode='after')
    def validate_credentials(self):
        # Monitor desabilitado não precisa de credenciais válidas
        if not self.enabled:
            return self

        if not PROJECT_KEY_PATTERN.fullmatch(self.project_key):
            raise ValueError("project_key deve começar com 'pk_' seguido de 22 caracteres base64url")
        if len(self.secret_key) != SECRET_KEY_LENGTH:
            raise ValueError(f"secret_key deve ter exatamente {SECRET_KEY_LENGTH} caracteres base64url")
        decode_secret(self.secret_key)
        if not is_allowed_endpoint(self.endpoint):
            raise ValueError(
                "endpoint deve seguir http://localhost:PORT/api/monitor/ingest ou ser "
                f"'{DEFAULT_ENDPOINT}' ou '{STAGING_ENDPOINT}'"
            )
        return self

    def secret_bytes(self) -> bytes:
        """Segredo decodificado usado na assinatura HMAC"""
        return decode_secret(self.secret_key)


def load_settings(config_path: Optional[str] = None, **overrides) -> MonitorSettings:
    """
    Carrega configurações do ambiente, de um arquivo YAML opcional e de overrides.

    O arquivo deve conter uma seção `monitor`. Overrides explícitos têm
    prioridade sobre o arquivo, que tem prioridade sobre variáveis de ambiente.
    """
    data: Dict[str, Any] = {}

    if config_path and os.path.exists(config_path):
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        section = config_data.get('monitor') or {}
        for key, value in section.items():
            if key in MonitorSettings.model_fields:
                data[key] = value
            else:
                logger.warning("Chave de configuração desconhecida ignorada", key=key, path=config_path)

    data.update(overrides)
    return MonitorSettings(**data)
