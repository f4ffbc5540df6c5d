"""
CRM Conexões - Routes Connections

CRUD des connexions de canaux + déconnexion / statut via l'API Baileys.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional

from models.connection import ConnectionCreate, ConnectionStatus
from services.baileys_client import BaileysApiError, baileys_api
from services.connections import (
    ConnectionNotFoundError,
    list_connections,
    get_connection,
    create_connection,
    disconnect_connection,
    delete_connection,
    refresh_connection_status,
)
from services.pairing_manager import get_pairing_manager

router = APIRouter(prefix="/connections", tags=["Connections"])


def get_baileys_api():
    """Dépendance: client Baileys partagé (surchargé dans les tests)"""
    return baileys_api


def _not_found(connection_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Connexion {connection_id} non trouvée")


def _bad_gateway(e: BaileysApiError) -> HTTPException:
    return HTTPException(status_code=502, detail=f"Erreur API Baileys: {str(e)}")


@router.get("")
async def list_all(status: Optional[ConnectionStatus] = Query(None, description="Filtrer par statut")):
    """Liste les connexions"""
    connections = await list_connections(status.value if status else None)
    return {"connections": connections, "count": len(connections)}


@router.get("/{connection_id}")
async def get_one(connection_id: str):
    """Récupère une connexion"""
    try:
        conn = await get_connection(connection_id)
    except ConnectionNotFoundError:
        raise _not_found(connection_id)
    return {"connection": conn}


@router.post("")
async def create(data: ConnectionCreate, api=Depends(get_baileys_api)):
    """Crée une connexion côté Baileys et l'enregistre"""
    try:
        result = await create_connection(data, api=api)
    except BaileysApiError as e:
        raise _bad_gateway(e)
    return {"success": True, **result}


@router.get("/{connection_id}/status")
async def refresh_status(connection_id: str, api=Depends(get_baileys_api)):
    """Relit le statut distant d'une connexion"""
    try:
        conn = await refresh_connection_status(connection_id, api=api)
    except ConnectionNotFoundError:
        raise _not_found(connection_id)
    except BaileysApiError as e:
        raise _bad_gateway(e)
    return {"connection": conn}


@router.post("/{connection_id}/disconnect")
async def disconnect(connection_id: str, api=Depends(get_baileys_api), manager=Depends(get_pairing_manager)):
    """Déconnecte une connexion (et ferme un éventuel pairing en cours)"""
    manager.close(connection_id)
    try:
        conn = await disconnect_connection(connection_id, api=api)
    except ConnectionNotFoundError:
        raise _not_found(connection_id)
    except BaileysApiError as e:
        raise _bad_gateway(e)
    return {"success": True, "connection": conn}


@router.delete("/{connection_id}")
async def delete(connection_id: str, api=Depends(get_baileys_api), manager=Depends(get_pairing_manager)):
    """Supprime définitivement une connexion"""
    manager.close(connection_id)
    try:
        deleted_id = await delete_connection(connection_id, api=api)
    except ConnectionNotFoundError:
        raise _not_found(connection_id)
    return {"success": True, "deleted_id": deleted_id}
