"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  CRM Conexões - Models Package                                               ║
║                                                                              ║
║  Exports tous les modèles pour import facile                                 ║
║  from models import ConnectionCreate, PairingStatus, etc.                    ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Connection (canal rattaché au tenant)
from .connection import (
    ConnectionStatus,
    ChannelType,
    ConnectionCreate,
)

# Pairing (session QR code en mémoire)
from .pairing import (
    PairingStatus,
    VALID_PAIRING_TRANSITIONS,
    BaileysConnectionResponse,
    PairingSnapshot,
)

__all__ = [
    "ConnectionStatus",
    "ChannelType",
    "ConnectionCreate",
    "PairingStatus",
    "VALID_PAIRING_TRANSITIONS",
    "BaileysConnectionResponse",
    "PairingSnapshot",
]
