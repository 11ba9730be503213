"""
Resolução do endpoint a partir da URL da request
"""
from urllib.parse import SplitResult, quote, urlsplit

# Caracteres mantidos como estão ao escapar o path (inclui % para não escapar duas vezes)
_PATH_SAFE = "/:@!$&'()*+,;=-._~%"


def _preferred_path(parts: SplitResult) -> str:
    if not parts.path:
        return ""
    return quote(parts.path, safe=_PATH_SAFE)


def _trim_query(raw: str) -> str:
    return raw.split('?', 1)[0]


def endpoint_from_url(raw: str) -> str:
    """
    Extrai o path (sem query string) de uma URL absoluta ou relativa.

    Retorna sempre com "/" inicial; string vazia significa endpoint não resolvido.

        >>> endpoint_from_url("https://api.service.dev/v1/resources?id=7")
        '/v1/resources'
    """
    if not raw:
        return ""

    path = raw

    if '://' in raw or raw.startswith('//'):
        try:
            path = _preferred_path(urlsplit(raw))
        except ValueError:
            path = raw
    elif raw.startswith('/'):
        path = raw
    else:
        try:
            candidate = _preferred_path(urlsplit(raw))
        except ValueError:
            candidate = ""
        if candidate:
            path = candidate

    path = _trim_query(path)
    if not path:
        return ""
    if not path.startswith('/'):
        path = '/' + path
    return path
