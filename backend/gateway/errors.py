"""
Error taxonomy for privileged operations.

Every failure a gateway endpoint can report is one of these exceptions. Each
carries the HTTP status, a stable machine `error` code, a human-readable
`detail` (Spanish, shown to the user as a toast), optional per-field messages
for validation failures, and an optional `debug` string that is only exposed
when `CLOVERPASS_EXPOSE_ERROR_DETAILS=true`.
"""
from __future__ import annotations

from typing import Optional


class GatewayError(Exception):
    status_code = 500
    error = "upstream_failure"
    default_detail = "Ocurrió un error interno."

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        error: Optional[str] = None,
        fields: Optional[dict] = None,
        debug: Optional[str] = None,
    ) -> None:
        self.detail = detail or self.default_detail
        if error:
            self.error = error
        self.fields = fields
        self.debug = debug
        super().__init__(f"{self.error}: {self.detail}")

    def to_payload(self, *, expose_debug: bool = False) -> dict:
        body: dict = {"error": self.error, "detail": self.detail}
        if self.fields is not None:
            body["details"] = self.fields
        if expose_debug and self.debug:
            body["debug"] = self.debug
        return body


class Unauthenticated(GatewayError):
    """No, invalid or expired token, or no profile behind a valid token."""

    status_code = 401
    error = "unauthenticated"
    default_detail = "No autenticado. Token no proporcionado."


class Unauthorized(GatewayError):
    status_code = 403
    error = "forbidden"
    default_detail = "Permiso denegado."


class ValidationFailed(GatewayError):
    status_code = 400
    error = "invalid_input"
    default_detail = "Datos inválidos."


class Conflict(GatewayError):
    status_code = 409
    error = "email_exists"
    default_detail = "El correo electrónico ya está registrado en la plataforma."


class NotFound(GatewayError):
    status_code = 404
    error = "not_found"
    default_detail = "Recurso no encontrado."


class UpstreamFailure(GatewayError):
    status_code = 500
    error = "upstream_failure"
    default_detail = "Ocurrió un error interno al procesar la solicitud."


class Inconsistency(UpstreamFailure):
    """The account exists but its profile write failed; reconciliation is queued."""

    error = "profile_write_failed"
    default_detail = "La cuenta fue creada pero su perfil no pudo guardarse. Se reintentará automáticamente."


def session_expired() -> Unauthenticated:
    return Unauthenticated(
        "El token de sesión ha expirado. Por favor, inicia sesión de nuevo.", error="session_expired"
    )


def invalid_token() -> Unauthenticated:
    return Unauthenticated("Token de sesión inválido.", error="invalid_token")


def caller_profile_not_found() -> Unauthenticated:
    # Same wording whether or not the identity exists.
    return Unauthenticated(
        "No se pudo verificar tu identidad para realizar esta acción.", error="caller_profile_not_found"
    )


def role_not_permitted(detail: Optional[str] = None) -> Unauthorized:
    return Unauthorized(
        detail or "Rol no permitido. Un admin de negocio solo puede crear Staff o Anfitriones.",
        error="role_not_permitted",
    )
