# ============================================================
# policy.py — Admission d'une demande de réservation
# ------------------------------------------------------------
# SlotAvailabilityPolicy décide ADMIT ou REJECT à partir de la
# demande et du nombre de réservations actives du créneau.
# Les règles sont évaluées dans l'ordre, la première qui échoue
# l'emporte :
#   1. taille du groupe (adultes + enfants)
#   2. fenêtre de dates autorisée
#   3. capacité du créneau
# Aucun effet de bord : l'appelant persiste seulement après Admit.
# ============================================================
from dataclasses import dataclass
from datetime import date
from typing import Union

from config import BookingRules
from errors import BusinessError, CapacityError, ValidationError


@dataclass(frozen=True)
class SlotRequest:
    branch: str
    date: date
    time: str
    adults: int
    children: int = 0

    @property
    def party_size(self) -> int:
        return self.adults + self.children


@dataclass(frozen=True)
class Admit:
    pass


@dataclass(frozen=True)
class Reject:
    error: BusinessError

    @property
    def reason(self) -> str:
        return self.error.message


ADMIT = Admit()


class SlotAvailabilityPolicy:
    def __init__(self, rules: BookingRules):
        self.rules = rules

    def evaluate(self, request: SlotRequest, active_count: int) -> Union[Admit, Reject]:
        if request.party_size > self.rules.max_party_size:
            return Reject(ValidationError(f"party size exceeds maximum of {self.rules.max_party_size}"))

        if not self.in_window(request.date):
            return Reject(ValidationError("date outside allowed booking window"))

        # seules les réservations actives sont comptées par l'appelant
        if active_count >= self.rules.slot_capacity:
            return Reject(CapacityError("time slot fully booked"))

        return ADMIT

    def in_window(self, day: date) -> bool:
        return self.rules.window_start <= day <= self.rules.window_end
