"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  CRM Conexões - Modèle Pairing (session QR code)                             ║
║                                                                              ║
║  LIFECYCLE:                                                                  ║
║  generating → ready → connected / expired                                    ║
║  expired → generating (retry uniquement)                                     ║
║                                                                              ║
║  RÈGLE: aucune persistance, la session vit en mémoire                        ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict
from enum import Enum


class PairingStatus(str, Enum):
    """Statuts d'une tentative de pairing"""
    GENERATING = "generating"   # Demande de QR en cours
    READY = "ready"             # QR affiché, countdown armé
    CONNECTED = "connected"     # Scan confirmé par le backend
    EXPIRED = "expired"         # Timeout ou échec, retry possible


# Transitions autorisées
VALID_PAIRING_TRANSITIONS = {
    "generating": ["ready", "expired", "connected"],
    "ready": ["expired", "connected", "generating"],  # generating = nouveau start
    "expired": ["generating", "connected"],
    "connected": [],  # Terminal
}


class BaileysConnectionResponse(BaseModel):
    """Réponse de l'Edge Function baileys-whatsapp (tous champs optionnels)"""
    model_config = ConfigDict(extra="ignore")

    connection_id: Optional[str] = None
    qr_code: Optional[str] = None
    expires_at: Optional[str] = None
    status: Optional[str] = None
    phone_number: Optional[str] = None
    last_activity_at: Optional[str] = None
    error: Optional[str] = None
    success: Optional[bool] = None


class PairingSnapshot(BaseModel):
    """Etat courant d'une session, tel qu'exposé à la vue"""
    session_id: str
    connection_id: Optional[str] = None
    status: PairingStatus
    qr_payload: Optional[str] = None
    expires_at: Optional[str] = None
    countdown_seconds: int = 0
    phone_number: Optional[str] = None
