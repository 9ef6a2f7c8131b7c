# ============================================================
# penalty.py — Pénalité après annulations répétées
# ------------------------------------------------------------
# Machine à états d'un utilisateur :
#   Clear ──(3e annulation consécutive)──▶ Penalized(until)
#   Penalized ──(réservation réussie)──▶ Clear
#   Penalized ──(now >= until, vu par check_blocked)──▶ Clear
# L'expiration est paresseuse : cooldown_until n'est jamais remis
# à None automatiquement, seule une réservation réussie l'efface.
# ============================================================
import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional, Union

from config import PenaltyRules


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    # si naïf (relu depuis SQLite), on suppose UTC
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class PenaltyState:
    consecutive_deletions: int = 0
    last_deletion_time: Optional[datetime] = None
    cooldown_until: Optional[datetime] = None

    def __post_init__(self):
        if self.consecutive_deletions < 0:
            raise ValueError("consecutive_deletions must be non-negative")
        object.__setattr__(self, "last_deletion_time", as_utc(self.last_deletion_time))
        object.__setattr__(self, "cooldown_until", as_utc(self.cooldown_until))


@dataclass(frozen=True)
class Allowed:
    pass


@dataclass(frozen=True)
class Blocked:
    until: datetime
    minutes_remaining: int


ALLOWED = Allowed()


class CooldownPenaltyTracker:
    def __init__(self, rules: PenaltyRules = PenaltyRules()):
        self.rules = rules

    def check_blocked(self, state: PenaltyState, now: datetime) -> Union[Allowed, Blocked]:
        now = as_utc(now)
        until = state.cooldown_until
        if until is None or now >= until:
            return ALLOWED
        minutes = math.ceil((until - now).total_seconds() / 60)
        return Blocked(until=until, minutes_remaining=minutes)

    def on_successful_booking(self, state: PenaltyState) -> PenaltyState:
        return replace(state, consecutive_deletions=0, cooldown_until=None)

    def on_cancellation(self, state: PenaltyState, now: datetime) -> PenaltyState:
        now = as_utc(now)
        last = state.last_deletion_time
        if last is None or now - last > self.rules.reset_window:
            count = 1
        else:
            count = state.consecutive_deletions + 1

        # cooldown_until n'est jamais effacé ici
        until = state.cooldown_until
        if count >= self.rules.threshold:
            until = now + self.rules.cooldown

        return PenaltyState(consecutive_deletions=count, last_deletion_time=now, cooldown_until=until)
