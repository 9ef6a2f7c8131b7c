# ============================================================
# repository.py — Accès aux données Reservation / User
# ------------------------------------------------------------
# Ce module implémente le design pattern "Repository" pour les
# tables Reservation et User. Il isole la logique SQL de la couche
# service et transforme toute panne SQLAlchemy en StoreError.
#
# Capacité : chaque réservation active occupe une place (seat)
# numérotée de 0 à capacité-1 dans son créneau. La contrainte
# unique sur (branch, date, time, seat) garantit qu'on ne dépasse
# jamais la capacité, même si deux requêtes comptent en même temps.
# ============================================================
import logging
from contextlib import contextmanager
from datetime import date
from typing import Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from errors import ConflictError, StoreError
from models import ACTIVE, CANCELLED, Reservation, User, utcnow
from penalty import PenaltyState

logger = logging.getLogger(__name__)


class ReservationRepository:
    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def _guard(self, operation: str):
        try:
            yield
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.exception("store failure during %s", operation)
            raise StoreError(operation) from e

    # --------------------------------------------------------
    # Réservations
    # --------------------------------------------------------
    def find_active_count(self, branch: str, day: date, time: str) -> int:
        with self._guard("find_active_count"):
            stmt = select(func.count(Reservation.id)).where(
                Reservation.branch == branch,
                Reservation.date == day,
                Reservation.time == time,
                Reservation.status == ACTIVE,
            )
            return self.session.exec(stmt).one()

    def active_counts_by_time(self, branch: str, day: date) -> Dict[str, int]:
        with self._guard("active_counts_by_time"):
            stmt = (
                select(Reservation.time, func.count(Reservation.id))
                .where(Reservation.branch == branch, Reservation.date == day, Reservation.status == ACTIVE)
                .group_by(Reservation.time)
            )
            return {time: count for time, count in self.session.exec(stmt).all()}

    def insert_reservation(self, record: Reservation, capacity: int,
                           gate: Optional[Callable[[PenaltyState], Optional[PenaltyState]]] = None) -> Optional[Reservation]:
        """Insère `record` en réclamant une place libre du créneau.

        `gate` reçoit l'état de pénalité du propriétaire, relu verrouillé
        dans la même transaction que l'insertion. Il renvoie le nouvel
        état à enregistrer, ou None pour refuser : rien n'est alors écrit
        et la méthode renvoie None.
        """
        record.status = ACTIVE
        return self._commit_with_seat(record, (record.branch, record.date, record.time), capacity, gate=gate)

    def move_reservation(self, record: Reservation, changes: dict, capacity: int) -> Reservation:
        """Applique `changes` ; si le créneau change, réclame une place dans le nouveau."""
        slot = (
            changes.get("branch", record.branch),
            changes.get("date", record.date),
            changes.get("time", record.time),
        )

        def apply(r: Reservation):
            for field, value in changes.items():
                setattr(r, field, value)
            r.updated_at = utcnow()

        if slot == (record.branch, record.date, record.time):
            with self._guard("move_reservation"):
                apply(record)
                self.session.add(record)
                self.session.commit()
                self.session.refresh(record)
                return record
        return self._commit_with_seat(record, slot, capacity, apply)

    def _taken_seats(self, branch: str, day: date, time: str) -> set:
        stmt = select(Reservation.seat).where(
            Reservation.branch == branch,
            Reservation.date == day,
            Reservation.time == time,
            Reservation.seat.is_not(None),
        )
        return set(self.session.exec(stmt).all())

    def _commit_with_seat(self, record: Reservation, slot: tuple, capacity: int,
                          apply: Optional[Callable[[Reservation], None]] = None,
                          gate: Optional[Callable[[PenaltyState], Optional[PenaltyState]]] = None) -> Optional[Reservation]:
        # Chaque échec d'insertion signifie qu'une autre requête a pris
        # la place visée : on recompte et on réessaie sur l'état frais.
        for _ in range(capacity * 2 + 1):
            with self._guard("claim_seat"):
                if gate is not None:
                    user = self._lock_user(record.user_id)
                    state = gate(user.penalty_state()) if user is not None else None
                    if state is None:
                        self.session.rollback()
                        return None
                    user.apply_penalty_state(state)
                    self.session.add(user)
                taken = self._taken_seats(*slot)
                free = [seat for seat in range(capacity) if seat not in taken]
                if not free:
                    self.session.rollback()
                    raise ConflictError(f"no free seat for {slot}")
                if apply is not None:
                    apply(record)
                record.seat = free[0]
                self.session.add(record)
                try:
                    self.session.commit()
                except IntegrityError:
                    self.session.rollback()
                    logger.debug("seat %s already taken for %s, retrying", free[0], slot)
                    continue
                self.session.refresh(record)
                return record
        raise ConflictError(f"could not claim a seat for {slot}")

    def _set_status(self, reservation: Reservation, status: str) -> None:
        reservation.status = status
        reservation.updated_at = utcnow()
        if status == CANCELLED:
            reservation.seat = None
        self.session.add(reservation)

    def _lock_user(self, user_id: int) -> Optional[User]:
        return self.session.exec(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()

    def update_reservation_status(self, reservation_id: int, owner_id: int, status: str) -> bool:
        # seule transition permise : active → cancelled ; réactiver une
        # réservation sans réclamer de place dépasserait la capacité
        if status != CANCELLED:
            raise ValueError(f"unsupported status transition to {status!r}")
        with self._guard("update_reservation_status"):
            reservation = self.session.exec(
                select(Reservation).where(
                    Reservation.id == reservation_id,
                    Reservation.user_id == owner_id,
                    Reservation.status == ACTIVE,
                )
            ).first()
            if reservation is None:
                return False
            self._set_status(reservation, status)
            self.session.commit()
            return True

    def cancel_reservation(self, reservation_id: int, owner_id: int,
                           transition: Callable[[PenaltyState], PenaltyState]) -> Optional[PenaltyState]:
        # Annulation + état de pénalité dans la même transaction :
        # soit les deux sont appliqués, soit aucun.
        with self._guard("cancel_reservation"):
            reservation = self.session.exec(
                select(Reservation)
                .where(
                    Reservation.id == reservation_id,
                    Reservation.user_id == owner_id,
                    Reservation.status == ACTIVE,
                )
                .with_for_update()
            ).first()
            user = self._lock_user(owner_id)
            if reservation is None or user is None:
                self.session.rollback()
                return None

            state = transition(user.penalty_state())
            user.apply_penalty_state(state)
            self.session.add(user)
            self._set_status(reservation, CANCELLED)
            self.session.commit()
            return state

    def get_owned(self, reservation_id: int, owner_id: int) -> Optional[Reservation]:
        with self._guard("get_owned"):
            return self.session.exec(
                select(Reservation).where(Reservation.id == reservation_id, Reservation.user_id == owner_id)
            ).first()

    def list_reservations(self, owner_id: int, branch: Optional[str] = None, day: Optional[date] = None,
                          status: Optional[str] = ACTIVE) -> List[Reservation]:
        with self._guard("list_reservations"):
            stmt = select(Reservation).where(Reservation.user_id == owner_id)
            if branch:
                stmt = stmt.where(Reservation.branch == branch)
            if day:
                stmt = stmt.where(Reservation.date == day)
            if status:
                stmt = stmt.where(Reservation.status == status)
            stmt = stmt.order_by(Reservation.date, Reservation.time, Reservation.id)
            return list(self.session.exec(stmt).all())

    # --------------------------------------------------------
    # Utilisateurs
    # --------------------------------------------------------
    def find_user(self, user_id: int) -> Optional[User]:
        with self._guard("find_user"):
            return self.session.get(User, user_id)

    def save_user(self, user: User) -> User:
        with self._guard("save_user"):
            self.session.add(user)
            self.session.commit()
            self.session.refresh(user)
            return user

    def create_user(self, name: str, email: str) -> Optional[User]:
        user = User(name=name, email=email)
        with self._guard("create_user"):
            self.session.add(user)
            try:
                self.session.commit()
            except IntegrityError:
                # e-mail déjà utilisé
                self.session.rollback()
                return None
            self.session.refresh(user)
            return user
