# ============================================================
# models.py — Modèles de données SQLModel (Reservation Service)
# ------------------------------------------------------------
# Définit les tables de la base et les schémas d'entrée :
#   1️. Reservation : une réservation d'un créneau dans une branche
#   2️. User : identité minimale + état de pénalité
#   3️. ReservationCreate / ReservationUpdate / UserCreate : corps
#      des requêtes HTTP
# ============================================================
import datetime as dt
from typing import Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from penalty import PenaltyState

ACTIVE = "active"
CANCELLED = "cancelled"


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


# ------------------------------------------------------------
# User
# ------------------------------------------------------------
# Les trois champs de pénalité sont lus et réécrits d'un bloc
# via PenaltyState ; on ne les modifie jamais un par un.
# ------------------------------------------------------------
class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(index=True, unique=True)
    last_deletion_time: Optional[dt.datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    consecutive_deletions: int = 0
    cooldown_until: Optional[dt.datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    created_at: dt.datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    def penalty_state(self) -> PenaltyState:
        return PenaltyState(
            consecutive_deletions=self.consecutive_deletions,
            last_deletion_time=self.last_deletion_time,
            cooldown_until=self.cooldown_until,
        )

    def apply_penalty_state(self, state: PenaltyState) -> None:
        self.consecutive_deletions = state.consecutive_deletions
        self.last_deletion_time = state.last_deletion_time
        self.cooldown_until = state.cooldown_until


# ------------------------------------------------------------
# Reservation
# ------------------------------------------------------------
# Cycle de vie : active → cancelled (jamais supprimée).
# `seat` numérote les places d'un créneau de 0 à capacité-1 ;
# la contrainte unique (branch, date, time, seat) empêche de
# dépasser la capacité même avec des insertions concurrentes.
# Une réservation annulée libère sa place (seat = NULL).
# ------------------------------------------------------------
class Reservation(SQLModel, table=True):
    __tablename__ = "reservations"
    __table_args__ = (
        UniqueConstraint("branch", "date", "time", "seat", name="uq_reservation_slot_seat"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    branch: str = Field(index=True)
    date: dt.date = Field(index=True)
    time: str
    adults: int
    children: int = 0
    status: str = ACTIVE
    seat: Optional[int] = None
    created_at: dt.datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: dt.datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class ReservationCreate(SQLModel):
    branch: str
    date: dt.date
    time: str
    adults: int = Field(gt=0)
    children: int = Field(default=0, ge=0)


class ReservationUpdate(SQLModel):
    branch: Optional[str] = None
    date: Optional[dt.date] = None
    time: Optional[str] = None
    adults: Optional[int] = Field(default=None, gt=0)
    children: Optional[int] = Field(default=None, ge=0)


class UserCreate(SQLModel):
    name: str
    email: str
