"""
CRM Conexões - Routes Pairing (QR code)

Une session de pairing par connexion, en mémoire.
Le statut est lu par la vue (poll HTTP) via GET.
"""

from fastapi import APIRouter, Depends, HTTPException

from services.connections import ConnectionNotFoundError, get_connection
from services.pairing_manager import get_pairing_manager
from services.pairing_session import PairingInvariantError

router = APIRouter(prefix="/connections/{connection_id}/pairing", tags=["Pairing"])


@router.post("")
async def open_pairing(connection_id: str, manager=Depends(get_pairing_manager)):
    """Ouvre une session de pairing et demande un QR code"""
    try:
        await get_connection(connection_id)
    except ConnectionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Connexion {connection_id} non trouvée")

    controller = await manager.open(connection_id)
    return {"pairing": controller.snapshot().model_dump()}


@router.get("")
async def get_pairing(connection_id: str, manager=Depends(get_pairing_manager)):
    """Etat courant de la session de pairing"""
    controller = manager.get(connection_id)
    if controller is None:
        raise HTTPException(status_code=404, detail="Aucune session de pairing ouverte")
    return {"pairing": controller.snapshot().model_dump()}


@router.post("/retry")
async def retry_pairing(connection_id: str, manager=Depends(get_pairing_manager)):
    """Génère un nouveau QR code après expiration"""
    if manager.get(connection_id) is None:
        raise HTTPException(status_code=404, detail="Aucune session de pairing ouverte")
    try:
        controller = await manager.retry(connection_id)
    except PairingInvariantError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"pairing": controller.snapshot().model_dump()}


@router.delete("")
async def close_pairing(connection_id: str, manager=Depends(get_pairing_manager)):
    """Ferme la session (fermeture de la vue)"""
    closed = manager.close(connection_id)
    return {"success": True, "closed": closed}
