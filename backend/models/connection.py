"""
CRM Conexões - Modèle Connection (canal de messagerie rattaché au tenant)

Collection: tenant_baileys_connections

Statuts:
- connecting: créée, QR pas encore émis
- waiting_scan: QR émis, en attente du scan
- connected / disconnected / error
"""

from typing import List
from pydantic import BaseModel, Field, field_validator
from enum import Enum


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    WAITING_SCAN = "waiting_scan"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ChannelType(str, Enum):
    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    WEBCHAT = "webchat"


class ConnectionCreate(BaseModel):
    """Création d'une connexion"""
    name: str = Field(..., min_length=1, max_length=100)
    sectors: List[str] = []
    channel: ChannelType = ChannelType.WHATSAPP

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Le nom de la connexion est obligatoire")
        return v

    @field_validator("sectors")
    @classmethod
    def clean_sectors(cls, v: List[str]) -> List[str]:
        # Doublons et vides retirés, ordre conservé
        seen = []
        for sector in v:
            sector = sector.strip()
            if sector and sector not in seen:
                seen.append(sector)
        return seen
