"""
CRM Conexões - Service Connections

Gestion des connexions de canaux (WhatsApp via Baileys).
Collection: tenant_baileys_connections (chaque doc identifié par id)

Le backend Baileys reste la source de vérité: ce service garde une copie
du statut pour l'affichage et la synchronise (création, pairing, poll périodique).
"""

import logging
from typing import Optional, Dict, Any, List

from config import db, now_iso
from models.connection import ConnectionCreate, ConnectionStatus
from models.pairing import PairingStatus
from services.baileys_client import BaileysApiError, baileys_api
from services.event_logger import log_event

logger = logging.getLogger("connections")

# Statuts encore en attente d'un scan, rafraîchis par le scheduler
PENDING_STATUSES = [ConnectionStatus.CONNECTING.value, ConnectionStatus.WAITING_SCAN.value]

# Statut pairing -> statut du record connexion
PAIRING_TO_CONNECTION_STATUS = {
    PairingStatus.GENERATING.value: ConnectionStatus.CONNECTING.value,
    PairingStatus.READY.value: ConnectionStatus.WAITING_SCAN.value,
    PairingStatus.CONNECTED.value: ConnectionStatus.CONNECTED.value,
}

VALID_CONNECTION_STATUSES = {s.value for s in ConnectionStatus}


class ConnectionNotFoundError(Exception):
    """Connexion inconnue"""

    def __init__(self, connection_id: str):
        super().__init__(f"Connection {connection_id} not found")
        self.connection_id = connection_id


async def list_connections(status: Optional[str] = None) -> List[Dict]:
    """Liste les connexions, plus récentes d'abord"""
    query = {}
    if status:
        query["status"] = status
    return await db.tenant_baileys_connections.find(query, {"_id": 0}).sort("created_at", -1).to_list(500)


async def get_connection(connection_id: str) -> Dict:
    """Récupère une connexion ou lève ConnectionNotFoundError"""
    doc = await db.tenant_baileys_connections.find_one({"id": connection_id}, {"_id": 0})
    if not doc:
        raise ConnectionNotFoundError(connection_id)
    return doc


async def create_connection(data: ConnectionCreate, api=baileys_api, user: str = "system") -> Dict[str, Any]:
    """
    Crée la connexion côté Baileys puis enregistre le record local.

    Returns:
        {"connection": doc, "qr_code": ..., "expires_at": ...}

    Raises:
        BaileysApiError si l'API refuse ou ne renvoie pas d'identifiant
    """
    result = await api.create_connection(data.name, data.sectors)
    if not result.connection_id:
        raise BaileysApiError("Réponse de création sans connection_id")

    status = ConnectionStatus.WAITING_SCAN.value if result.qr_code else ConnectionStatus.CONNECTING.value
    now = now_iso()
    doc = {
        "id": result.connection_id,
        "name": data.name,
        "channel": data.channel.value,
        "sectors": data.sectors,
        "status": status,
        "phone_number": None,
        "qr_expires_at": result.expires_at,
        "last_activity_at": None,
        "created_at": now,
        "updated_at": now,
    }

    await db.tenant_baileys_connections.insert_one(doc)
    doc.pop("_id", None)

    logger.info(f"[CONNECTIONS] Connexion créée {doc['id']} ({data.name}) status={status}")
    await log_event(
        action="create_connection",
        entity_type="connection",
        entity_id=doc["id"],
        user=user,
        details={"name": data.name, "sectors": data.sectors, "channel": data.channel.value},
    )

    return {"connection": doc, "qr_code": result.qr_code, "expires_at": result.expires_at}


async def disconnect_connection(connection_id: str, api=baileys_api, user: str = "system") -> Dict:
    """Déconnecte côté Baileys et remet le record à disconnected"""
    await get_connection(connection_id)
    await api.disconnect_connection(connection_id)

    await db.tenant_baileys_connections.update_one(
        {"id": connection_id},
        {"$set": {
            "status": ConnectionStatus.DISCONNECTED.value,
            "phone_number": None,
            "qr_expires_at": None,
            "updated_at": now_iso(),
        }}
    )

    logger.info(f"[CONNECTIONS] Connexion {connection_id} déconnectée")
    await log_event(action="disconnect_connection", entity_type="connection", entity_id=connection_id, user=user)
    return await get_connection(connection_id)


async def delete_connection(connection_id: str, api=baileys_api, user: str = "system") -> str:
    """
    Supprime définitivement une connexion.
    La déconnexion distante est tentée d'abord; son échec n'empêche pas la suppression.
    """
    conn = await get_connection(connection_id)

    try:
        await api.disconnect_connection(connection_id)
    except BaileysApiError as e:
        logger.warning(f"[CONNECTIONS] Déconnexion distante échouée avant suppression de {connection_id}: {str(e)}")

    result = await db.tenant_baileys_connections.delete_one({"id": connection_id})
    if result.deleted_count == 0:
        raise ConnectionNotFoundError(connection_id)

    logger.info(f"[CONNECTIONS] Connexion {connection_id} supprimée")
    await log_event(
        action="delete_connection",
        entity_type="connection",
        entity_id=connection_id,
        user=user,
        details={"name": conn.get("name")},
    )
    return connection_id


async def refresh_connection_status(connection_id: str, api=baileys_api) -> Dict:
    """Relit le statut distant et met à jour le record"""
    conn = await get_connection(connection_id)
    result = await api.get_connection_status(connection_id)

    update = {"updated_at": now_iso()}
    if result.status in VALID_CONNECTION_STATUSES:
        update["status"] = result.status
    else:
        logger.warning(f"[CONNECTIONS] Statut distant inconnu pour {connection_id}: {result.status}")
    if result.phone_number is not None:
        update["phone_number"] = result.phone_number
    if result.last_activity_at is not None:
        update["last_activity_at"] = result.last_activity_at

    await db.tenant_baileys_connections.update_one({"id": connection_id}, {"$set": update})

    if update.get("status") and update["status"] != conn.get("status"):
        logger.info(f"[CONNECTIONS] {connection_id}: {conn.get('status')} -> {update['status']}")

    return await get_connection(connection_id)


async def record_pairing_status(
    connection_id: str,
    pairing_status: str,
    phone_number: Optional[str] = None,
    qr_expires_at: Optional[str] = None,
) -> bool:
    """
    Reporte l'état d'une session de pairing sur le record connexion.
    "expired" ne modifie pas le record (le QR a expiré, la connexion reste en attente).

    Returns: True si le record a été mis à jour
    """
    status = PAIRING_TO_CONNECTION_STATUS.get(pairing_status)
    if status is None:
        return False

    now = now_iso()
    update = {"status": status, "updated_at": now}
    if status == ConnectionStatus.WAITING_SCAN.value:
        update["qr_expires_at"] = qr_expires_at
    if status == ConnectionStatus.CONNECTED.value:
        update["phone_number"] = phone_number
        update["qr_expires_at"] = None
        update["last_activity_at"] = now

    result = await db.tenant_baileys_connections.update_one({"id": connection_id}, {"$set": update})
    if result.matched_count == 0:
        logger.warning(f"[CONNECTIONS] Pairing {pairing_status} pour une connexion inconnue: {connection_id}")
        return False

    if status == ConnectionStatus.CONNECTED.value:
        await log_event(
            action="pairing_connected",
            entity_type="connection",
            entity_id=connection_id,
            details={"phone_number": phone_number},
        )
    return True


async def sync_connection_statuses(api=baileys_api) -> int:
    """
    Rafraîchit toutes les connexions en attente de scan.
    Une erreur sur une connexion n'interrompt pas les autres.

    Returns: nombre de connexions dont le statut a changé
    """
    pending = await db.tenant_baileys_connections.find(
        {"status": {"$in": PENDING_STATUSES}}, {"_id": 0}
    ).to_list(500)

    changed = 0
    for conn in pending:
        try:
            refreshed = await refresh_connection_status(conn["id"], api=api)
        except (BaileysApiError, ConnectionNotFoundError) as e:
            logger.warning(f"[CONNECTIONS] Sync impossible pour {conn['id']}: {str(e)}")
            continue
        if refreshed.get("status") != conn.get("status"):
            changed += 1

    return changed
