"""
Configuration et utilitaires partagés
"""

import os
import uuid
from datetime import datetime, timezone
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'test_database')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

# Supabase Edge Function (service de pairing Baileys)
SUPABASE_URL = os.environ.get('SUPABASE_URL', 'http://localhost:54321').rstrip('/')
SUPABASE_SERVICE_KEY = os.environ.get('SUPABASE_SERVICE_KEY', '')
BAILEYS_FUNCTION_NAME = os.environ.get('BAILEYS_FUNCTION_NAME', 'baileys-whatsapp')
BAILEYS_TIMEOUT = float(os.environ.get('BAILEYS_TIMEOUT', '30'))

# Pairing QR code (valeurs empiriques, ajustables)
PAIRING_TICK_INTERVAL = float(os.environ.get('PAIRING_TICK_INTERVAL', '1'))
PAIRING_POLL_INTERVAL = float(os.environ.get('PAIRING_POLL_INTERVAL', '3'))
PAIRING_CLOSE_DELAY = float(os.environ.get('PAIRING_CLOSE_DELAY', '2'))
PAIRING_POLL_GRACE = float(os.environ.get('PAIRING_POLL_GRACE', '5'))
# Session expirée sans retry: fermée (timers + registre) après ce délai
PAIRING_EXPIRED_TTL = float(os.environ.get('PAIRING_EXPIRED_TTL', '120'))

# Synchronisation périodique des statuts de connexion
CONNECTION_SYNC_MINUTES = int(os.environ.get('CONNECTION_SYNC_MINUTES', '5'))

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')


# ==================== HELPERS ====================

def generate_id() -> str:
    """Génère un identifiant de document"""
    return str(uuid.uuid4())

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return datetime.now(timezone.utc).isoformat()

def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """
    Parse une date ISO renvoyée par l'API (suffixe "Z" accepté).
    Une date sans fuseau est considérée UTC.

    Returns: datetime aware, ou None si la valeur est vide/illisible
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace('Z', '+00:00'))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
