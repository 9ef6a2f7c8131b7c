# ============================================================
# publisher.py — Émission d'événements RabbitMQ
# ------------------------------------------------------------
# Le service Reservation informe les autres services (notification,
# statistiques) des changements d'état : ReservationCreated,
# ReservationUpdated, ReservationCancelled, UserPenalized.
# La publication a lieu après le commit ; un broker indisponible
# est journalisé mais ne fait jamais échouer la requête.
# ============================================================
import json
import logging

import pika
from pika.exceptions import AMQPError

from config import PUBLISH_EVENTS, RABBITMQ_HOST

logger = logging.getLogger(__name__)

EXCHANGE = "events"


# Publie un message sur l'échange "events" en mode fanout :
#
#   - event_type : nom de l'événement
#   - payload    : contenu du message (sérialisable JSON)
#
# Renvoie False si le broker n'a pas pu être joint.

def publish_event(event_type: str, payload: dict) -> bool:
    if not PUBLISH_EVENTS:
        logger.debug("publishing disabled, dropping %s", event_type)
        return False
    try:
        conn = pika.BlockingConnection(pika.ConnectionParameters(host=RABBITMQ_HOST))
        try:
            ch = conn.channel()
            # durable=True pour survivre aux redémarrages RabbitMQ
            ch.exchange_declare(exchange=EXCHANGE, exchange_type="fanout", durable=True)
            message = {"type": event_type, "payload": payload}
            ch.basic_publish(exchange=EXCHANGE, routing_key="", body=json.dumps(message, default=str))
        finally:
            conn.close()
    except (AMQPError, OSError) as e:
        logger.warning("could not publish %s: %s", event_type, e)
        return False
    logger.info("[event] %s %s", event_type, payload)
    return True
