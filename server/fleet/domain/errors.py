from __future__ import annotations
"""server/fleet/domain/errors.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Taxonomie d'erreurs du cœur + type `Result`.

- ValidationError : entrée invalide (intervalle négatif, compteur qui recule, enum
  inconnue...). Rejetée AVANT toute mutation.
- NotFoundError : machine ou entrée embarquée introuvable (404 côté API).
- PersistenceError : panne de stockage, levée (jamais retournée) par les repositories.
  ConcurrencyConflictError : compare-and-set perdu trop de fois.

Le domaine (agrégat, moteur d'alarmes) ne lève pas pour les cas attendus : il
retourne un `Result`. Seules les pannes d'infrastructure sont des exceptions.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class DomainError(Exception):
    code = "DOMAIN_ERROR"

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        out = {"code": self.code, "message": self.message}
        if self.field:
            out["field"] = self.field
        return out

    def __repr__(self) -> str:  # pragma: no cover
        return f"<{type(self).__name__} field={self.field!r} message={self.message!r}>"


class ValidationError(DomainError):
    code = "VALIDATION_ERROR"


class DomainRuleError(ValidationError):
    """Règle métier violée (ex: QuickCheck sur machine retirée)."""
    code = "DOMAIN_RULE_VIOLATION"


class NotFoundError(DomainError):
    code = "NOT_FOUND"


class PersistenceError(DomainError):
    code = "PERSISTENCE_ERROR"


class ConcurrencyConflictError(PersistenceError):
    code = "CONCURRENCY_CONFLICT"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Succès (`value`) ou échec (`error`), jamais les deux."""

    value: Optional[T] = None
    error: Optional[DomainError] = None

    @classmethod
    def success(cls, value: T = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: DomainError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Retourne la valeur ou lève l'erreur portée (pratique en tests / tâches)."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def invalid(message: str, field: Optional[str] = None) -> Result:
    return Result.failure(ValidationError(message, field=field))


def not_found(message: str, field: Optional[str] = None) -> Result:
    return Result.failure(NotFoundError(message, field=field))
