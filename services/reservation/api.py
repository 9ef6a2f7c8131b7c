# ============================================================
# Reservation API Router
# ------------------------------------------------------------
# Expose les endpoints REST pour réserver, consulter, modifier
# et annuler une réservation, ainsi que la disponibilité des
# créneaux et l'état de pénalité de l'utilisateur courant.
# L'utilisateur authentifié est fourni par l'en-tête X-User-Id
# (la session elle-même est gérée en amont).
# ============================================================
from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlmodel import Session, create_engine

from config import DATABASE_URL, LOCAL_TZ, load_booking_rules, load_penalty_rules
from errors import BusinessError
from models import Reservation, ReservationCreate, ReservationUpdate, User, UserCreate, utcnow
from penalty import Blocked
from publisher import publish_event
from repository import ReservationRepository
from service import ReservationService


def make_engine(url: str):
    # SQLite : une connexion peut être utilisée par le thread pool de FastAPI
    connect_args = {"check_same_thread": False, "timeout": 30} if url.startswith("sqlite") else {}
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


# Moteur SQLAlchemy/SQLModel + routeur FastAPI
engine = make_engine(DATABASE_URL)
router = APIRouter()

BOOKING_RULES = load_booking_rules()
PENALTY_RULES = load_penalty_rules()


# Dépendance FastAPI : fournit une Session DB par requête, auto-close
def get_session():
    with Session(engine) as s:
        yield s


def get_clock():
    return utcnow


def get_publisher():
    return publish_event


def get_current_user_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    if x_user_id is None:
        raise HTTPException(401, "not authenticated")
    return x_user_id


def get_service(s: Session = Depends(get_session), clock=Depends(get_clock),
                publish=Depends(get_publisher)) -> ReservationService:
    return ReservationService(
        ReservationRepository(s),
        booking_rules=BOOKING_RULES,
        penalty_rules=PENALTY_RULES,
        clock=clock,
        publish=publish,
    )


def unwrap(result):
    # les refus métier deviennent des réponses HTTP typées
    if isinstance(result, BusinessError):
        raise HTTPException(result.status_code, result.as_detail())
    return result


# On convertit un datetime stocké (UTC) en affichage local
def to_local(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(LOCAL_TZ).isoformat()


# ------------------------------------------------------------
# Utilisateurs
# ------------------------------------------------------------
@router.post("/v1/users", response_model=User, status_code=201)
def create_user(body: UserCreate, svc: ReservationService = Depends(get_service)):
    return unwrap(svc.register_user(body.name, body.email))


@router.get("/v1/users/me/penalty")
def get_penalty(user_id: int = Depends(get_current_user_id), svc: ReservationService = Depends(get_service)):
    state, decision = unwrap(svc.penalty_status(user_id))
    blocked = isinstance(decision, Blocked)
    return {
        "blocked": blocked,
        "minutes_remaining": decision.minutes_remaining if blocked else 0,
        "until": to_local(decision.until) if blocked else None,
        "consecutive_deletions": state.consecutive_deletions,
        "last_deletion_time": to_local(state.last_deletion_time),
    }


# ------------------------------------------------------------
# GET /v1/slots — Disponibilité des créneaux d'une branche
# ------------------------------------------------------------
@router.get("/v1/slots")
def list_slots(branch: str, date: date, svc: ReservationService = Depends(get_service)):
    return {"branch": branch, "date": date.isoformat(), "slots": unwrap(svc.availability(branch, date))}


# ------------------------------------------------------------
# POST /v1/reservations — Créer une réservation
# ------------------------------------------------------------
# - 429 si l'utilisateur est pénalisé (minutes restantes incluses)
# - 400 si la taille du groupe ou la date est invalide
# - 409 si le créneau est complet
# ------------------------------------------------------------
@router.post("/v1/reservations", response_model=Reservation, status_code=201)
def create_reservation(body: ReservationCreate, user_id: int = Depends(get_current_user_id),
                       svc: ReservationService = Depends(get_service)):
    return unwrap(svc.book(user_id, body))


@router.get("/v1/reservations", response_model=List[Reservation])
def list_reservations(status: Optional[str] = "active", branch: Optional[str] = None,
                      date: Optional[date] = None, user_id: int = Depends(get_current_user_id),
                      svc: ReservationService = Depends(get_service)):
    # status=all pour inclure les réservations annulées
    return unwrap(svc.list_reservations(user_id, branch=branch, day=date,
                                        status=None if status == "all" else status))


@router.get("/v1/reservations/{reservation_id}", response_model=Reservation)
def get_reservation(reservation_id: int, user_id: int = Depends(get_current_user_id),
                    svc: ReservationService = Depends(get_service)):
    return unwrap(svc.get_reservation(user_id, reservation_id))


@router.put("/v1/reservations/{reservation_id}", response_model=Reservation)
def update_reservation(reservation_id: int, body: ReservationUpdate,
                       user_id: int = Depends(get_current_user_id),
                       svc: ReservationService = Depends(get_service)):
    return unwrap(svc.update(user_id, reservation_id, body))


# ------------------------------------------------------------
# POST /v1/reservations/{id}/cancel — Annuler une réservation
# ------------------------------------------------------------
# - La réservation passe à "cancelled" (jamais supprimée)
# - Le compteur d'annulations consécutives est mis à jour dans
#   la même transaction ; au 3e, l'utilisateur est bloqué
# ------------------------------------------------------------
@router.post("/v1/reservations/{reservation_id}/cancel")
def cancel_reservation(reservation_id: int, user_id: int = Depends(get_current_user_id),
                       svc: ReservationService = Depends(get_service)):
    state = unwrap(svc.cancel(user_id, reservation_id))
    return {
        "status": "cancelled",
        "consecutive_deletions": state.consecutive_deletions,
        "cooldown_until": to_local(state.cooldown_until),
    }
