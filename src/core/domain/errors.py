"""Taxonomía de errores de flowctl.

Por qué una jerarquía propia:
- La CLI captura `FlowCtlError` en un único punto y decide el exit code.
- Los pipelines masivos guardan estos errores por item sin abortar al resto.
"""

from __future__ import annotations

_STATUS_CATEGORIES: dict[int, str] = {
    400: "Bad Request - malformed request syntax",
    401: "Unauthorized - the client must authenticate itself",
    403: "Forbidden - the client does not have access rights",
    404: "Not found - the server cannot find the requested resource",
    405: "Method Not Allowed - the request method is not supported by the target resource",
    409: "Conflict - request conflicts with the current state of the server",
    415: "Unsupported media type - media format of the requested data is not supported by the server",
    429: "Too Many Requests - user has sent too many requests",
    500: "Internal server error",
    501: "Not Implemented - request method is not supported by the server",
    502: "Bad Gateway",
    503: "Service Unavailable - the server is not ready to handle the request",
}


def status_category(status_code: int) -> str:
    """Mensaje legible para un status HTTP."""

    return _STATUS_CATEGORIES.get(status_code, "unknown error")


class FlowCtlError(Exception):
    """Base de todos los errores esperables de la aplicación."""


class TransportError(FlowCtlError):
    """Fallo de red (DNS, conexión, timeout) antes de obtener respuesta."""


class ApiError(FlowCtlError):
    """El control plane respondió con status >= 400."""

    def __init__(self, status_code: int, body: str = "", *, url: str | None = None) -> None:
        self.status_code = status_code
        self.category = status_category(status_code)
        self.body = body
        self.url = url
        message = f"{status_code} {self.category}"
        if body:
            message = f"{message}: {body.strip()[:500]}"
        super().__init__(message)


class DecodeError(FlowCtlError):
    """JSON (respuesta, definición u overrides) mal formado o fuera de contrato."""


class AuthError(FlowCtlError):
    """No hay credenciales válidas o el intercambio del token falló."""


class RepeatedPageTokenError(FlowCtlError):
    """El servidor devolvió el mismo `nextPageToken` dos veces seguidas."""

    def __init__(self, token: str) -> None:
        self.token = token
        super().__init__(f"server returned repeated page token {token!r}")


class OverrideError(FlowCtlError):
    """Override inválido (campo obligatorio ausente) o warning escalado."""


class FilenameError(FlowCtlError):
    """Nombre de recurso que no respeta el contrato de ficheros versionados."""
