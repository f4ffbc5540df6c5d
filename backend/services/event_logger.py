"""
CRM Conexões - Event Logger

Audit trail des actions sur les connexions (création, pairing, déconnexion).
Single function to call from any route/service.
"""

import logging
from config import db, generate_id, now_iso

logger = logging.getLogger("event_logger")


async def log_event(
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    details: dict = None,
):
    """
    Write a single event to the event_log collection.

    Args:
        action: e.g. create_connection, pairing_connected, disconnect_connection
        entity_type: connection
        entity_id: ID of the primary entity
        user: email of user performing action
        details: free-form dict (name, phone_number, old_status, etc.)
    """
    try:
        await db.event_log.insert_one({
            "id": generate_id(),
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "user": user,
            "details": details or {},
            "created_at": now_iso()
        })
    except Exception as e:
        # L'audit ne doit jamais bloquer l'action métier
        logger.error(f"[EVENT_LOG] Echec écriture {action} {entity_type}/{entity_id}: {str(e)}")
