"""
Client de l'API Baileys WhatsApp (Supabase Edge Function)
Centralise tous les appels vers le service de pairing

Format API:
- Endpoint: POST {SUPABASE_URL}/functions/v1/baileys-whatsapp
- Auth: Authorization: Bearer {key} + apikey: {key}
- Body: JSON {"action": "create" | "get_qr" | "disconnect" | "status", ...}
"""

import httpx
import logging
from typing import List, Optional
from pydantic import ValidationError

from config import (
    SUPABASE_URL, SUPABASE_SERVICE_KEY, BAILEYS_FUNCTION_NAME, BAILEYS_TIMEOUT,
)
from models.pairing import BaileysConnectionResponse

logger = logging.getLogger("baileys_client")


class BaileysApiError(Exception):
    """Erreur de communication avec l'API Baileys"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class BaileysApiClient:
    """Appels vers l'Edge Function, une requête par action"""

    def __init__(
        self,
        base_url: str = SUPABASE_URL,
        api_key: str = SUPABASE_SERVICE_KEY,
        function_name: str = BAILEYS_FUNCTION_NAME,
        timeout: float = BAILEYS_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = f"{base_url.rstrip('/')}/functions/v1/{function_name}"
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        return headers

    async def _request(self, payload: dict) -> BaileysConnectionResponse:
        action = payload.get("action")
        logger.info(f"[BAILEYS] action={action} connection={payload.get('connectionId', '-')}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as http_client:
                response = await http_client.post(self.url, json=payload, headers=self._headers())
        except httpx.TimeoutException:
            logger.error(f"[BAILEYS] Timeout action={action}")
            raise BaileysApiError(f"Timeout sur l'action {action}")
        except httpx.HTTPError as e:
            logger.error(f"[BAILEYS] Erreur transport action={action}: {str(e)}")
            raise BaileysApiError(f"Erreur de communication: {str(e)}")

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400 or (isinstance(data, dict) and data.get("error")):
            message = (data.get("error") if isinstance(data, dict) else None) or f"HTTP {response.status_code}"
            logger.error(f"[BAILEYS] Erreur API action={action} status={response.status_code}: {message}")
            raise BaileysApiError(message, status_code=response.status_code)

        try:
            result = BaileysConnectionResponse.model_validate(data)
        except ValidationError as e:
            raise BaileysApiError(f"Réponse invalide: {str(e)}", status_code=response.status_code)

        logger.debug(f"[BAILEYS] Réponse action={action}: status={result.status}")
        return result

    async def create_connection(self, name: str, sectors: Optional[List[str]] = None) -> BaileysConnectionResponse:
        """Crée une nouvelle connexion WhatsApp"""
        return await self._request({"action": "create", "name": name, "sectors": sectors or []})

    async def get_qr_code(self, connection_id: str) -> BaileysConnectionResponse:
        """Obtient le QR code d'une connexion"""
        return await self._request({"action": "get_qr", "connectionId": connection_id})

    async def get_connection_status(self, connection_id: str) -> BaileysConnectionResponse:
        """Vérifie le statut d'une connexion"""
        return await self._request({"action": "status", "connectionId": connection_id})

    async def disconnect_connection(self, connection_id: str) -> BaileysConnectionResponse:
        """Déconnecte une connexion WhatsApp"""
        return await self._request({"action": "disconnect", "connectionId": connection_id})


baileys_api = BaileysApiClient()
