from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from conftest import BRANCH, DAY
from errors import ConflictError, StoreError
from models import ACTIVE, CANCELLED, Reservation
from penalty import PenaltyState


def make(user, time="18:00", day=DAY, branch=BRANCH):
    return Reservation(user_id=user.id, branch=branch, date=day, time=time, adults=2, children=1)


def test_insert_claims_distinct_seats(repo, user):
    seats = [repo.insert_reservation(make(user), capacity=5).seat for _ in range(3)]
    assert seats == [0, 1, 2]
    assert repo.find_active_count(BRANCH, DAY, "18:00") == 3


def test_insert_refuses_when_no_seat_is_free(repo, user):
    for _ in range(2):
        repo.insert_reservation(make(user), capacity=2)
    with pytest.raises(ConflictError):
        repo.insert_reservation(make(user), capacity=2)
    assert repo.find_active_count(BRANCH, DAY, "18:00") == 2


def test_cancelled_reservations_free_their_seat(repo, user):
    first = repo.insert_reservation(make(user), capacity=1)
    assert repo.update_reservation_status(first.id, user.id, CANCELLED)
    assert repo.find_active_count(BRANCH, DAY, "18:00") == 0

    second = repo.insert_reservation(make(user), capacity=1)
    assert second.seat == 0
    assert repo.get_owned(first.id, user.id).status == CANCELLED


def test_status_update_only_cancels_active_reservations(repo, user):
    first = repo.insert_reservation(make(user), capacity=1)
    assert repo.update_reservation_status(first.id, user.id, CANCELLED)
    assert not repo.update_reservation_status(first.id, user.id, CANCELLED)
    second = repo.insert_reservation(make(user), capacity=1)

    with pytest.raises(ValueError):
        repo.update_reservation_status(first.id, user.id, ACTIVE)
    with pytest.raises(ValueError):
        repo.update_reservation_status(second.id, user.id, "pending")
    assert repo.get_owned(first.id, user.id).status == CANCELLED
    assert repo.get_owned(second.id, user.id).status == ACTIVE
    assert repo.find_active_count(BRANCH, DAY, "18:00") == 1


def test_update_status_checks_owner(repo, user):
    other = repo.create_user("Bob", "bob@example.com")
    r = repo.insert_reservation(make(user), capacity=5)
    assert not repo.update_reservation_status(r.id, other.id, CANCELLED)
    assert repo.get_owned(r.id, user.id).status == ACTIVE


def test_cancel_applies_status_and_penalty_together(repo, user):
    r = repo.insert_reservation(make(user), capacity=5)
    now = datetime(2025, 12, 1, 10, 0, tzinfo=timezone.utc)

    state = repo.cancel_reservation(r.id, user.id, lambda s: PenaltyState(s.consecutive_deletions + 1, now, None))
    assert state.consecutive_deletions == 1

    fresh = repo.find_user(user.id)
    assert fresh.consecutive_deletions == 1
    assert fresh.penalty_state().last_deletion_time == now
    assert repo.get_owned(r.id, user.id).status == CANCELLED


def test_cancel_of_unknown_or_foreign_reservation_changes_nothing(repo, user):
    other = repo.create_user("Bob", "bob@example.com")
    r = repo.insert_reservation(make(user), capacity=5)

    def transition(s):
        raise AssertionError("transition must not run")

    assert repo.cancel_reservation(r.id, other.id, transition) is None
    assert repo.cancel_reservation(9999, user.id, transition) is None
    assert repo.get_owned(r.id, user.id).status == ACTIVE


def test_cancel_is_rolled_back_when_penalty_transition_fails(repo, user):
    r = repo.insert_reservation(make(user), capacity=5)

    def broken(s):
        raise OperationalError("UPDATE users", {}, Exception("disk I/O error"))

    with pytest.raises(StoreError):
        repo.cancel_reservation(r.id, user.id, broken)
    assert repo.get_owned(r.id, user.id).status == ACTIVE
    assert repo.find_user(user.id).consecutive_deletions == 0


def test_move_to_another_slot_takes_a_new_seat(repo, user):
    r = repo.insert_reservation(make(user, time="12:00"), capacity=5)
    repo.insert_reservation(make(user, time="13:00"), capacity=5)

    moved = repo.move_reservation(r, {"time": "13:00", "adults": 4}, capacity=5)
    assert moved.time == "13:00"
    assert moved.adults == 4
    assert moved.seat == 1
    assert repo.find_active_count(BRANCH, DAY, "12:00") == 0


def test_move_to_full_slot_is_refused(repo, user):
    r = repo.insert_reservation(make(user, time="12:00"), capacity=1)
    repo.insert_reservation(make(user, time="13:00"), capacity=1)
    with pytest.raises(ConflictError):
        repo.move_reservation(r, {"time": "13:00"}, capacity=1)
    assert repo.get_owned(r.id, user.id).time == "12:00"


def test_list_is_sorted_and_filtered(repo, user):
    repo.insert_reservation(make(user, time="19:00"), capacity=5)
    early = repo.insert_reservation(make(user, time="12:00", day=date(2025, 12, 2)), capacity=5)
    late = repo.insert_reservation(make(user, time="12:00"), capacity=5)
    repo.update_reservation_status(late.id, user.id, CANCELLED)

    active = repo.list_reservations(user.id)
    assert [(r.date, r.time) for r in active] == [(date(2025, 12, 2), "12:00"), (DAY, "19:00")]
    assert len(repo.list_reservations(user.id, status=None)) == 3
    assert [r.id for r in repo.list_reservations(user.id, day=date(2025, 12, 2))] == [early.id]
    assert repo.list_reservations(user.id, branch="Ho Man Tin Branch") == []


def test_active_counts_by_time(repo, user):
    for time in ("12:00", "12:00", "18:30"):
        repo.insert_reservation(make(user, time=time), capacity=5)
    assert repo.active_counts_by_time(BRANCH, DAY) == {"12:00": 2, "18:30": 1}


def test_duplicate_email_is_refused(repo, user):
    assert repo.create_user("Alice bis", "alice@example.com") is None


def test_save_user_round_trips_penalty_fields(repo, user):
    until = datetime(2025, 12, 1, 10, 0, tzinfo=timezone.utc)
    user.apply_penalty_state(PenaltyState(3, until - timedelta(minutes=10), until))
    repo.save_user(user)
    assert repo.find_user(user.id).penalty_state().cooldown_until == until
