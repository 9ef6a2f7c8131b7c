# ============================================================
# slots.py — Créneaux horaires et branches
# ------------------------------------------------------------
# Créneaux de 30 minutes :
#   - service du midi : 12:00 → 16:00 (16:00 inclus)
#   - service du soir : 17:00 → 21:00 (21:00 inclus)
# Entre 16:00 et 17:00 la cuisine est fermée.
# ============================================================
from typing import Optional, Sequence

SERVICE_PERIODS = ((12, 16), (17, 21))
SLOT_STEP_MINUTES = 30


def generate_time_slots(periods=SERVICE_PERIODS, step: int = SLOT_STEP_MINUTES) -> list:
    slots = []
    for first_hour, last_hour in periods:
        minutes = first_hour * 60
        while minutes <= last_hour * 60:
            slots.append(f"{minutes // 60:02d}:{minutes % 60:02d}")
            minutes += step
    return slots


TIME_SLOTS = tuple(generate_time_slots())


def parse_time_slot(value: str) -> Optional[str]:
    # accepte "9:30" ou "09:30", renvoie la forme canonique HH:MM
    try:
        hour, minute = value.strip().split(":")
        canonical = f"{int(hour):02d}:{int(minute):02d}"
    except (AttributeError, ValueError):
        return None
    return canonical if canonical in TIME_SLOTS else None


def parse_branch(value: str, branches: Sequence[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    wanted = value.strip().casefold()
    for branch in branches:
        if branch.casefold() == wanted:
            return branch
    return None
