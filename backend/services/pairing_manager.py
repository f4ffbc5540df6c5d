"""
CRM Conexões - Pairing Session Manager

Une seule session de pairing vivante par connexion.
- open: dispose la session précédente puis démarre une nouvelle tentative
- close: dispose et oublie la session (fermeture de la vue)
- une session connectée se ferme seule après le délai d'affichage
"""

import asyncio
import logging
from typing import Dict, Optional

from services.pairing_session import ConnectionSessionController, PairingInvariantError
from models.pairing import PairingStatus
from services.connections import record_pairing_status

logger = logging.getLogger("pairing_manager")


class PairingSessionManager:
    """Registre des sessions de pairing, indexé par connection_id"""

    def __init__(self, api, scheduler, persist: bool = True, **controller_options):
        self.api = api
        self.scheduler = scheduler
        self.persist = persist
        self.controller_options = controller_options
        self._sessions: Dict[str, ConnectionSessionController] = {}
        self._pending_writes = set()

    def get(self, connection_id: str) -> Optional[ConnectionSessionController]:
        return self._sessions.get(connection_id)

    def __len__(self):
        return len(self._sessions)

    async def open(self, connection_id: str) -> ConnectionSessionController:
        """Ouvre (ou remplace) la session de pairing d'une connexion et la démarre"""
        previous = self._sessions.pop(connection_id, None)
        if previous is not None:
            logger.info(f"[PAIRING_MANAGER] Session {previous.session_id} remplacée pour {connection_id}")
            previous.dispose()

        controller = ConnectionSessionController(
            self.api,
            self.scheduler,
            on_status_change=self._on_status_change,
            on_close=self._on_close,
            **self.controller_options,
        )
        self._sessions[connection_id] = controller
        await controller.start(connection_id)
        return controller

    async def retry(self, connection_id: str) -> ConnectionSessionController:
        """
        Relance la session expirée d'une connexion.

        Raises:
            KeyError si aucune session n'est ouverte
            PairingInvariantError si la session n'est pas expirée
        """
        controller = self._sessions[connection_id]
        if controller.status != PairingStatus.EXPIRED:
            raise PairingInvariantError(
                f"Retry only allowed from 'expired', session {controller.session_id} is '{controller.status.value}'"
            )
        await controller.retry()
        return controller

    def close(self, connection_id: str) -> bool:
        """Ferme la session d'une connexion. Returns: True si une session existait"""
        controller = self._sessions.pop(connection_id, None)
        if controller is None:
            return False
        controller.dispose()
        return True

    def close_all(self):
        for connection_id in list(self._sessions):
            self.close(connection_id)

    # ==================== LISTENERS ====================

    def _on_status_change(self, controller: ConnectionSessionController):
        if not self.persist:
            return
        expires_at = controller.expires_at.isoformat() if controller.expires_at else None
        task = asyncio.ensure_future(record_pairing_status(
            controller.connection_id,
            controller.status.value,
            phone_number=controller.phone_number,
            qr_expires_at=expires_at,
        ))
        self._pending_writes.add(task)
        task.add_done_callback(self._write_done)

    def _write_done(self, task: asyncio.Future):
        self._pending_writes.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[PAIRING_MANAGER] Echec mise à jour connexion: {str(task.exception())}")

    def _on_close(self, controller: ConnectionSessionController):
        # Ne retire que la session courante, pas une session qui l'a déjà remplacée
        if self._sessions.get(controller.connection_id) is controller:
            del self._sessions[controller.connection_id]
            logger.info(f"[PAIRING_MANAGER] Session {controller.session_id} fermée après connexion")

    async def flush(self):
        """Attend les écritures de statut en cours"""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)


_manager: Optional[PairingSessionManager] = None


def get_pairing_manager() -> PairingSessionManager:
    """Dépendance FastAPI: manager partagé, branché sur le scheduler de l'app"""
    global _manager
    if _manager is None:
        from scheduler_service import task_scheduler
        from services.baileys_client import baileys_api
        _manager = PairingSessionManager(baileys_api, task_scheduler.scheduler)
    return _manager
