"""
Domain exceptions.

Raised by the domain and service layers when a business rule is violated.
Every error carries a French, user-facing ``message`` and a stable
machine ``code``; the API layer translates them into HTTP responses via
``http_status``.
"""

from __future__ import annotations


class WaliError(Exception):
    """Base class for every business error of the platform."""

    code = "WALI_ERROR"
    http_status = 400
    default_message = "Une erreur est survenue"

    def __init__(self, message: str | None = None, *, code: str | None = None):
        self.message = message or self.default_message
        if code:
            self.code = code
        super().__init__(self.message)


class ValidationError(WaliError):
    code = "VALIDATION_ERROR"
    http_status = 400
    default_message = "Données invalides"


class NotFoundError(WaliError):
    code = "NOT_FOUND"
    http_status = 404
    default_message = "Ressource introuvable"


class ConflictError(WaliError):
    """A concurrent writer won the race (e.g. the order was already taken)."""

    code = "CONFLICT"
    http_status = 409
    default_message = "Conflit avec l'état actuel de la ressource"


class InvalidTransitionError(WaliError):
    code = "INVALID_TRANSITION"
    http_status = 409
    default_message = "Changement de statut non autorisé"


class TerminalStateError(InvalidTransitionError):
    """The entity is already DELIVERED / CANCELLED / FAILED (or settled)."""

    code = "TERMINAL_STATE"
    default_message = "La commande est déjà clôturée"


class PermissionDeniedError(WaliError):
    code = "FORBIDDEN"
    http_status = 403
    default_message = "Accès refusé"


class AuthenticationError(WaliError):
    code = "UNAUTHORIZED"
    http_status = 401
    default_message = "Identifiants invalides ou token expiré"


class ProviderError(WaliError):
    """An external provider (maps, payments) failed or answered garbage."""

    code = "PROVIDER_ERROR"
    http_status = 502
    default_message = "Le service externe est momentanément indisponible"
