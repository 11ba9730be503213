"""
Aiko Monitor - SDK Python

Captura um evento por request/response HTTP, remove dados sensíveis e entrega
em background, assinado e comprimido, para o endpoint de ingestão da Aiko.
"""

from .version import __version__

__author__ = "Aiko Monitor Team"
__description__ = "HTTP request/response capture and delivery SDK for Aiko Monitor"

from .config import MonitorSettings, load_settings
from .event import Event
from .redactor import DataRedactor, create_redactor
from .codec import canonical_headers, canonical_header_map, parse_json_body, decode_response_body
from .endpoint import endpoint_from_url
from .sender import EventSender, is_retryable_error, is_retryable_status
from .monitor import Monitor, create_monitor
from .middleware import MonitorMiddleware, WSGIMonitorMiddleware
from .log_config import configure_logging

__all__ = [
    '__version__',
    'MonitorSettings',
    'load_settings',
    'Event',
    'DataRedactor',
    'create_redactor',
    'canonical_headers',
    'canonical_header_map',
    'parse_json_body',
    'decode_response_body',
    'endpoint_from_url',
    'EventSender',
    'is_retryable_error',
    'is_retryable_status',
    'Monitor',
    'create_monitor',
    'MonitorMiddleware',
    'WSGIMonitorMiddleware',
    'configure_logging',
]
