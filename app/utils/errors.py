"""Error taxonomy for the chat service.

Every error carries the HTTP status it maps to and a user-facing `reply` in the
application's display language. `detail` holds internal information that is
only exposed outside production.
"""


class NutriBotError(Exception):
    status_code = 500
    reply = "❌ Error interno del servidor. Por favor, intenta nuevamente."

    def __init__(self, reply: str | None = None, *, detail: str | None = None,
                 status_code: int | None = None, headers: dict | None = None):
        if reply is not None:
            self.reply = reply
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail
        self.headers = headers or {}
        super().__init__(detail or self.reply)

    def payload(self) -> dict:
        return {"reply": self.reply}


class ValidationError(NutriBotError):
    status_code = 400
    reply = "❌ Datos inválidos."

    def __init__(self, errors: dict[str, str]):
        self.errors = dict(errors)
        message = "; ".join(f"{name}: {text}" for name, text in self.errors.items())
        super().__init__(f"❌ Datos inválidos. {message}", detail=message)

    @property
    def fields(self) -> list[str]:
        return list(self.errors)


class UnsupportedMediaError(NutriBotError):
    status_code = 400
    reply = "❌ Tipo de contenido no soportado."


class RateLimitError(NutriBotError):
    status_code = 429
    reply = "⏳ Has alcanzado el límite de consultas. Intenta nuevamente más tarde."

    def __init__(self, reset_time, limit: int, retry_after: int):
        self.reset_time = reset_time
        super().__init__(headers={
            "Retry-After": str(retry_after),
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Reset": str(int(reset_time.timestamp())),
        })

    def payload(self) -> dict:
        return {"reply": self.reply, "resetTime": self.reset_time.isoformat()}


class NotFoundError(NutriBotError):
    status_code = 404
    reply = "Conversación no encontrada."


class UpstreamError(NutriBotError):
    status_code = 502
    reply = "❌ Error al procesar tu consulta nutricional."


class CompletionTimeoutError(NutriBotError):
    status_code = 408
    reply = "⏱️ La consulta tardó demasiado. Por favor, intenta nuevamente."


class PersistenceError(NutriBotError):
    status_code = 500
    reply = "💾 Error de base de datos. Intenta nuevamente en unos momentos."


class DatabaseConnectionError(PersistenceError):
    pass


class InternalError(NutriBotError):
    status_code = 500
