# ============================================================
# app.py — Point d'entrée du service Reservation
# ------------------------------------------------------------
# Ce module initialise l'application FastAPI :
#   - Configure la journalisation
#   - Crée les tables dans la base de données
#   - Traduit les pannes du stockage en réponse générique 503
#   - Monte les routes API
# ============================================================
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlmodel import SQLModel

import models  # noqa: F401  (enregistre les tables)
from api import engine, router
from config import LOG_LEVEL
from errors import StoreError

logging.basicConfig(level=LOG_LEVEL, format="[%(name)s] %(levelname)s %(message)s")
logger = logging.getLogger("reservation")

app = FastAPI(title="Reservation Service")


# Exécuté automatiquement par FastAPI au lancement du conteneur : crée les tables SQL.
@app.on_event("startup")
def start():
    SQLModel.metadata.create_all(engine)


# Le détail de la panne reste dans les logs (repository.py)
@app.exception_handler(StoreError)
def store_error_handler(request: Request, exc: StoreError):
    logger.error("request %s %s failed: store unavailable", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "try again later"})


@app.get("/health")
def health():
    return {"ok": True}


# Inclusion des routes principales REST (API Reservation)
app.include_router(router)
