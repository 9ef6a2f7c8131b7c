# ============================================================
# service.py — Orchestration des réservations
# ------------------------------------------------------------
# ReservationService enchaîne les décisions métier :
#   réservation : pénalité → validation → capacité → insertion
#                 (+ remise à zéro de la pénalité, même transaction)
#                 → événement
#   annulation  : statut + pénalité dans une seule transaction
#                 → événement(s)
# Les refus métier sont renvoyés comme valeurs (errors.py) ;
# seules les StoreError remontent en exception.
# ============================================================
import logging
from datetime import date, datetime
from typing import Callable, List, Optional, Tuple, Union

from config import BookingRules, PenaltyRules
from errors import (
    BusinessError,
    CapacityError,
    ConflictError,
    NotFoundError,
    PenaltyError,
    ValidationError,
)
from models import ACTIVE, Reservation, ReservationCreate, ReservationUpdate, User, utcnow
from penalty import Allowed, Blocked, CooldownPenaltyTracker, PenaltyState
from policy import Reject, SlotAvailabilityPolicy, SlotRequest
from repository import ReservationRepository
from slots import TIME_SLOTS, parse_branch, parse_time_slot

logger = logging.getLogger(__name__)

PENALTY_MESSAGE = (
    "You cannot make a new reservation yet. "
    "Please wait {minutes} more minute(s) due to recent cancellations."
)


def _no_publish(event_type: str, payload: dict) -> bool:
    return False


def reservation_payload(r: Reservation) -> dict:
    return {
        "reservationId": r.id,
        "userId": r.user_id,
        "branch": r.branch,
        "date": r.date.isoformat(),
        "time": r.time,
        "adults": r.adults,
        "children": r.children,
    }


class ReservationService:
    def __init__(
        self,
        repo: ReservationRepository,
        booking_rules: BookingRules = BookingRules(),
        penalty_rules: PenaltyRules = PenaltyRules(),
        clock: Callable[[], datetime] = utcnow,
        publish: Callable[[str, dict], bool] = _no_publish,
    ):
        self.repo = repo
        self.rules = booking_rules
        self.policy = SlotAvailabilityPolicy(booking_rules)
        self.tracker = CooldownPenaltyTracker(penalty_rules)
        self.clock = clock
        self.publish = publish

    # --------------------------------------------------------
    # Parsing des champs branche / créneau
    # --------------------------------------------------------
    def _parse_slot(self, branch: str, time: str) -> Union[Tuple[str, str], ValidationError]:
        parsed_branch = parse_branch(branch, self.rules.branches)
        if parsed_branch is None:
            return ValidationError(f"unknown branch: {branch}")
        parsed_time = parse_time_slot(time)
        if parsed_time is None:
            return ValidationError(f"unknown time slot: {time}")
        return parsed_branch, parsed_time

    # --------------------------------------------------------
    # Réservation
    # --------------------------------------------------------
    def book(self, user_id: int, data: ReservationCreate) -> Union[Reservation, BusinessError]:
        user = self.repo.find_user(user_id)
        if user is None:
            return NotFoundError("user not found")

        # 1) pénalité d'abord : un utilisateur bloqué ne voit jamais "complet"
        decision = self.tracker.check_blocked(user.penalty_state(), self.clock())
        if isinstance(decision, Blocked):
            logger.info("user %s blocked for %s more minute(s)", user_id, decision.minutes_remaining)
            return self._penalty_error(decision)

        parsed = self._parse_slot(data.branch, data.time)
        if isinstance(parsed, ValidationError):
            return parsed
        branch, time = parsed

        # 2) taille du groupe, fenêtre de dates, capacité
        request = SlotRequest(branch=branch, date=data.date, time=time, adults=data.adults, children=data.children)
        verdict = self.policy.evaluate(request, self.repo.find_active_count(branch, data.date, time))
        if isinstance(verdict, Reject):
            logger.debug("booking rejected for user %s: %s", user_id, verdict.reason)
            return verdict.error

        # 3) insertion protégée par la contrainte de places ; la pénalité est
        # relue sous verrou et remise à zéro dans la même transaction, pour
        # qu'une annulation validée entre-temps ne soit pas effacée
        blocked = None

        def admit(current: PenaltyState) -> Optional[PenaltyState]:
            nonlocal blocked
            fresh = self.tracker.check_blocked(current, self.clock())
            if isinstance(fresh, Blocked):
                blocked = fresh
                return None
            return self.tracker.on_successful_booking(current)

        record = Reservation(
            user_id=user_id, branch=branch, date=data.date, time=time,
            adults=data.adults, children=data.children,
        )
        try:
            created = self.repo.insert_reservation(record, self.rules.slot_capacity, gate=admit)
        except ConflictError:
            logger.info("slot %s %s %s filled concurrently", branch, data.date, time)
            return CapacityError("time slot fully booked")
        if created is None and blocked is None:
            return NotFoundError("user not found")
        if created is None:
            logger.info("user %s penalized while booking", user_id)
            return self._penalty_error(blocked)
        logger.info("reservation %s created for user %s", created.id, user_id)

        self.publish("ReservationCreated", reservation_payload(created))
        return created

    def _penalty_error(self, decision: Blocked) -> PenaltyError:
        return PenaltyError(
            PENALTY_MESSAGE.format(minutes=decision.minutes_remaining),
            until=decision.until,
            minutes_remaining=decision.minutes_remaining,
        )

    # --------------------------------------------------------
    # Annulation
    # --------------------------------------------------------
    def cancel(self, user_id: int, reservation_id: int) -> Union[PenaltyState, NotFoundError]:
        now = self.clock()
        state = self.repo.cancel_reservation(
            reservation_id, user_id, lambda current: self.tracker.on_cancellation(current, now)
        )
        if state is None:
            return NotFoundError("reservation not found")

        logger.info(
            "reservation %s cancelled by user %s (%s consecutive)",
            reservation_id, user_id, state.consecutive_deletions,
        )
        self.publish("ReservationCancelled", {"reservationId": reservation_id, "userId": user_id})
        if state.consecutive_deletions >= self.tracker.rules.threshold:
            logger.info("user %s penalized until %s", user_id, state.cooldown_until.isoformat())
            self.publish("UserPenalized", {
                "userId": user_id,
                "until": state.cooldown_until.isoformat(),
                "consecutiveDeletions": state.consecutive_deletions,
            })
        return state

    # --------------------------------------------------------
    # Modification
    # --------------------------------------------------------
    def update(self, user_id: int, reservation_id: int,
               data: ReservationUpdate) -> Union[Reservation, BusinessError]:
        record = self.repo.get_owned(reservation_id, user_id)
        if record is None or record.status != ACTIVE:
            return NotFoundError("reservation not found")

        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        parsed = self._parse_slot(changes.get("branch", record.branch), changes.get("time", record.time))
        if isinstance(parsed, ValidationError):
            return parsed
        branch, time = parsed
        day = changes.get("date", record.date)
        if "branch" in changes:
            changes["branch"] = branch
        if "time" in changes:
            changes["time"] = time

        request = SlotRequest(
            branch=branch, date=day, time=time,
            adults=changes.get("adults", record.adults),
            children=changes.get("children", record.children),
        )
        slot_changed = (branch, day, time) != (record.branch, record.date, record.time)
        # la capacité n'est vérifiée que si la réservation change de créneau
        active_count = self.repo.find_active_count(branch, day, time) if slot_changed else 0
        verdict = self.policy.evaluate(request, active_count)
        if isinstance(verdict, Reject):
            return verdict.error

        try:
            updated = self.repo.move_reservation(record, changes, self.rules.slot_capacity)
        except ConflictError:
            return CapacityError("time slot fully booked")
        logger.info("reservation %s updated by user %s", updated.id, user_id)
        self.publish("ReservationUpdated", reservation_payload(updated))
        return updated

    # --------------------------------------------------------
    # Consultation
    # --------------------------------------------------------
    def get_reservation(self, user_id: int, reservation_id: int) -> Union[Reservation, NotFoundError]:
        record = self.repo.get_owned(reservation_id, user_id)
        if record is None:
            return NotFoundError("reservation not found")
        return record

    def list_reservations(self, user_id: int, branch: Optional[str] = None, day: Optional[date] = None,
                          status: Optional[str] = ACTIVE) -> Union[List[Reservation], ValidationError]:
        if branch is not None:
            parsed = parse_branch(branch, self.rules.branches)
            if parsed is None:
                return ValidationError(f"unknown branch: {branch}")
            branch = parsed
        return self.repo.list_reservations(user_id, branch=branch, day=day, status=status)

    def availability(self, branch: str, day: date) -> Union[List[dict], ValidationError]:
        parsed = parse_branch(branch, self.rules.branches)
        if parsed is None:
            return ValidationError(f"unknown branch: {branch}")
        bookable = self.policy.in_window(day)
        counts = self.repo.active_counts_by_time(parsed, day)
        capacity = self.rules.slot_capacity
        return [
            {
                "time": slot,
                "booked": counts.get(slot, 0),
                "remaining": max(capacity - counts.get(slot, 0), 0) if bookable else 0,
            }
            for slot in TIME_SLOTS
        ]

    # --------------------------------------------------------
    # Utilisateurs
    # --------------------------------------------------------
    def register_user(self, name: str, email: str) -> Union[User, ValidationError]:
        user = self.repo.create_user(name.strip(), email.strip().lower())
        if user is None:
            return ValidationError("email already registered")
        return user

    def penalty_status(self, user_id: int) -> Union[Tuple[PenaltyState, Union[Allowed, Blocked]], NotFoundError]:
        user = self.repo.find_user(user_id)
        if user is None:
            return NotFoundError("user not found")
        state = user.penalty_state()
        return state, self.tracker.check_blocked(state, self.clock())
