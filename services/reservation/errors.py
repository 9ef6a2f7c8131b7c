# ============================================================
# errors.py — Résultats d'erreur du service Reservation
# ------------------------------------------------------------
# Les refus métier (validation, capacité, pénalité, introuvable)
# sont des issues normales : ce sont des valeurs renvoyées par le
# service, jamais levées. Seules les pannes du stockage
# (StoreError) remontent comme exceptions.
# ============================================================
from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar


@dataclass(frozen=True)
class BusinessError:
    message: str
    status_code: ClassVar[int] = 400

    def as_detail(self) -> dict:
        return {"error": type(self).__name__, "message": self.message}


@dataclass(frozen=True)
class ValidationError(BusinessError):
    status_code: ClassVar[int] = 400


@dataclass(frozen=True)
class CapacityError(BusinessError):
    status_code: ClassVar[int] = 409


@dataclass(frozen=True)
class PenaltyError(BusinessError):
    until: datetime = None
    minutes_remaining: int = 0
    status_code: ClassVar[int] = 429

    def as_detail(self) -> dict:
        detail = super().as_detail()
        detail["minutes_remaining"] = self.minutes_remaining
        detail["until"] = self.until.isoformat() if self.until else None
        return detail


@dataclass(frozen=True)
class NotFoundError(BusinessError):
    status_code: ClassVar[int] = 404


class StoreError(Exception):
    """Panne du stockage sous-jacent ; le détail reste dans les logs."""


class ConflictError(Exception):
    """Le créneau n'a plus de place libre au moment de l'insertion."""
