"""
Versão do SDK enviada no header x-aiko-version
"""

__version__ = "1.0.0"

SDK_LANGUAGE = "python"
VERSION_HEADER = "x-aiko-version"


def version_header_value() -> str:
    """Valor canônico do header de versão ("python:<versão>")"""
    return f"{SDK_LANGUAGE}:{__version__}"
