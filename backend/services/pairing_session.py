"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  CRM Conexões - Pairing Session Controller                                   ║
║                                                                              ║
║  Cycle de vie d'UNE tentative de pairing QR code pour UNE connexion          ║
║  generating → ready → connected / expired, expired → generating (retry)      ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - SEUL ce module modifie le statut d'une session                            ║
║  - un résultat de poll "connected" passe AVANT l'expiration du countdown     ║
║  - après dispose(), aucun timer ni appel en vol ne modifie la session        ║
║  - toute erreur distante se résout en "expired", rien ne remonte à la vue    ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from apscheduler.jobstores.base import JobLookupError

from config import (
    PAIRING_TICK_INTERVAL, PAIRING_POLL_INTERVAL, PAIRING_CLOSE_DELAY, PAIRING_POLL_GRACE,
    PAIRING_EXPIRED_TTL, parse_iso,
)
from models.pairing import (
    PairingStatus, VALID_PAIRING_TRANSITIONS, BaileysConnectionResponse, PairingSnapshot,
)

logger = logging.getLogger("pairing_session")


class PairingInvariantError(Exception):
    """Raised when a pairing session is driven outside its state machine"""
    pass


def validate_pairing_transition(session_id: str, from_status: str, to_status: str) -> bool:
    """Valide qu'une transition de statut pairing est autorisée."""
    valid_next = VALID_PAIRING_TRANSITIONS.get(from_status, [])

    if to_status not in valid_next:
        raise PairingInvariantError(
            f"INVALID TRANSITION: session {session_id} cannot go from '{from_status}' to '{to_status}'. "
            f"Valid transitions from '{from_status}': {valid_next}"
        )

    return True


def _default_clock() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionSessionController:
    """
    Pilote une tentative de pairing, de la demande de QR jusqu'à l'issue.

    Deux jobs répétés par session, portés par le scheduler:
    - countdown (tick_interval): recalcule le temps restant depuis expires_at
    - poll (poll_interval): interroge le statut distant tant que non connecté

    Un job "date" de fermeture est posé en sortie: close_delay après connected,
    expired_ttl après expired (annulé par un retry).

    Args:
        api: client exposant get_qr_code / get_connection_status
        scheduler: AsyncIOScheduler (ou équivalent exposant add_job)
        clock: horloge murale, injectable pour les tests
        on_status_change: appelé après chaque transition avec le controller
        on_close: appelé une fois, après le délai d'affichage du succès
    """

    def __init__(
        self,
        api,
        scheduler,
        tick_interval: float = PAIRING_TICK_INTERVAL,
        poll_interval: float = PAIRING_POLL_INTERVAL,
        close_delay: float = PAIRING_CLOSE_DELAY,
        poll_grace: float = PAIRING_POLL_GRACE,
        expired_ttl: float = PAIRING_EXPIRED_TTL,
        clock: Callable[[], datetime] = _default_clock,
        on_status_change: Optional[Callable] = None,
        on_close: Optional[Callable] = None,
    ):
        self.api = api
        self.scheduler = scheduler
        self.tick_interval = tick_interval
        self.poll_interval = poll_interval
        self.close_delay = close_delay
        self.poll_grace = poll_grace
        self.expired_ttl = expired_ttl
        self._clock = clock
        self._on_status_change = on_status_change
        self._on_close = on_close

        self.session_id = str(uuid.uuid4())
        self.connection_id: Optional[str] = None
        self.status = PairingStatus.GENERATING
        self.qr_payload: Optional[str] = None
        self.expires_at: Optional[datetime] = None
        self.countdown_seconds = 0
        self.phone_number: Optional[str] = None

        self._countdown_job = None
        self._poll_job = None
        self._close_job = None
        self._poll_call: Optional[asyncio.Future] = None
        self._fetching = False
        self._attempt = 0
        self._disposed = False

    # ==================== ETAT ====================

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def countdown_armed(self) -> bool:
        return self._countdown_job is not None

    @property
    def poll_armed(self) -> bool:
        return self._poll_job is not None

    def snapshot(self) -> PairingSnapshot:
        return PairingSnapshot(
            session_id=self.session_id,
            connection_id=self.connection_id,
            status=self.status,
            qr_payload=self.qr_payload,
            expires_at=self.expires_at.isoformat() if self.expires_at else None,
            countdown_seconds=self.countdown_seconds,
            phone_number=self.phone_number,
        )

    def _time_left(self) -> float:
        if self.expires_at is None:
            return 0.0
        return max(0.0, (self.expires_at - self._clock()).total_seconds())

    def _refresh_countdown(self) -> float:
        # Arrondi pour l'affichage uniquement, la décision se fait sur le temps brut
        left = self._time_left()
        self.countdown_seconds = int(round(left))
        return left

    def _set_status(self, new_status: PairingStatus):
        if new_status == self.status:
            return
        validate_pairing_transition(self.session_id, self.status.value, new_status.value)

        old_status = self.status
        self.status = new_status
        logger.info(
            f"[PAIRING] {self.session_id} connection={self.connection_id} "
            f"{old_status.value} -> {new_status.value}"
        )

        if self._on_status_change:
            try:
                self._on_status_change(self)
            except Exception as e:
                logger.error(f"[PAIRING] Listener on_status_change en erreur: {str(e)}")

    # ==================== OPERATIONS ====================

    async def start(self, connection_id: str):
        """
        Demande un QR code et arme le countdown.

        Non réentrant: un second appel pendant qu'une requête est en vol est ignoré.
        Toute erreur distante termine en "expired".
        """
        if self._disposed:
            logger.warning(f"[PAIRING] start ignoré, session {self.session_id} disposée")
            return
        if not connection_id:
            raise PairingInvariantError("start requires a connection_id")
        if self.connection_id and connection_id != self.connection_id:
            raise PairingInvariantError(
                f"Session {self.session_id} is bound to connection {self.connection_id}, "
                f"got {connection_id}"
            )
        if self.status == PairingStatus.CONNECTED:
            raise PairingInvariantError(
                f"Session {self.session_id} already connected, open a new session to pair again"
            )
        if self._fetching:
            logger.warning(f"[PAIRING] start ignoré, requête QR déjà en vol pour {connection_id}")
            return

        self.connection_id = connection_id
        self._disarm_countdown()
        self._cancel_close()

        # Le QR précédent n'est plus valide
        self.qr_payload = None
        self.expires_at = None
        self.countdown_seconds = 0
        self._set_status(PairingStatus.GENERATING)
        self._arm_poll()

        self._attempt += 1
        attempt = self._attempt
        self._fetching = True
        try:
            response = await self.api.get_qr_code(connection_id)
        except Exception as e:
            response = None
            error = str(e)
        else:
            error = None
        finally:
            self._fetching = False

        if self._disposed or attempt != self._attempt or self.status != PairingStatus.GENERATING:
            logger.info(f"[PAIRING] Réponse QR ignorée pour {connection_id} (session disposée ou obsolète)")
            return

        if error is not None:
            logger.error(f"[PAIRING] Echec génération QR pour {connection_id}: {error}")
            self._mark_expired()
            return

        self._apply_qr_response(response)

    async def retry(self) -> bool:
        """Relance une tentative depuis "expired". Sans effet depuis un autre statut."""
        if self._disposed or self.status != PairingStatus.EXPIRED:
            logger.info(f"[PAIRING] retry ignoré, statut={self.status.value} session={self.session_id}")
            return False
        await self.start(self.connection_id)
        return True

    def dispose(self):
        """Désarme tous les timers. Idempotent, appelable à tout moment."""
        if self._disposed:
            return
        self._disposed = True
        self._disarm_countdown()
        self._disarm_poll()
        self._cancel_close()
        logger.info(f"[PAIRING] Session {self.session_id} disposée (statut={self.status.value})")

    # ==================== TIMERS ====================

    async def tick(self):
        """Tick du countdown. A zéro, un poll en vol est appliqué avant d'expirer."""
        if self._disposed or self.status != PairingStatus.READY:
            self._disarm_countdown()
            return

        if self._refresh_countdown() > 0:
            return

        # Plus de tick pendant l'attente du poll en vol
        self._disarm_countdown()
        attempt = self._attempt

        pending = self._poll_call
        if pending is not None and not pending.done():
            await asyncio.wait([pending], timeout=self.poll_grace)
        if pending is not None and pending.done() and not pending.cancelled() and pending.exception() is None:
            self._apply_status_response(pending.result())

        if self._disposed or attempt != self._attempt or self.status != PairingStatus.READY:
            return

        self._mark_expired()

    async def poll(self):
        """Interroge le statut distant. Les erreurs sont loggées, jamais remontées."""
        if self._disposed or self.status == PairingStatus.CONNECTED or not self.connection_id:
            return
        if self._poll_call is not None and not self._poll_call.done():
            return

        call = asyncio.ensure_future(self.api.get_connection_status(self.connection_id))
        self._poll_call = call
        try:
            response = await call
        except Exception as e:
            logger.warning(f"[PAIRING] Poll statut en erreur pour {self.connection_id}: {str(e)}")
            return

        if self._disposed:
            return
        self._apply_status_response(response)

    # ==================== INTERNES ====================

    def _apply_qr_response(self, response: Optional[BaileysConnectionResponse]):
        if response is not None and response.status == "connected":
            self._mark_connected(response.phone_number)
            return

        expires_at = parse_iso(response.expires_at) if response is not None else None
        if response is None or not response.qr_code or expires_at is None:
            logger.error(f"[PAIRING] Réponse QR incomplète pour {self.connection_id}")
            self._mark_expired()
            return

        self.qr_payload = response.qr_code
        self.expires_at = expires_at

        if self._refresh_countdown() <= 0:
            self._mark_expired()
            return

        self._set_status(PairingStatus.READY)
        self._arm_countdown()

    def _apply_status_response(self, response: Optional[BaileysConnectionResponse]):
        if self._disposed or self.status == PairingStatus.CONNECTED or response is None:
            return
        if response.status == "connected":
            self._mark_connected(response.phone_number)

    def _mark_connected(self, phone_number: Optional[str] = None):
        self._disarm_countdown()
        self._disarm_poll()
        self.phone_number = phone_number
        self._set_status(PairingStatus.CONNECTED)
        self._schedule_close(self.close_delay)

    def _mark_expired(self):
        self._disarm_countdown()
        self._set_status(PairingStatus.EXPIRED)
        # Le poll continue (un scan tardif reste détecté) jusqu'à la fermeture
        self._schedule_close(self.expired_ttl)

    def _schedule_close(self, delay: float):
        self._close_job = self.scheduler.add_job(
            self._close,
            "date",
            run_date=datetime.now(timezone.utc) + timedelta(seconds=delay),
            id=f"pairing-close-{self.session_id}",
            replace_existing=True,
        )

    def _cancel_close(self):
        self._remove_job(self._close_job)
        self._close_job = None

    async def _close(self):
        self._close_job = None
        if self._disposed:
            return
        if self._on_close:
            try:
                self._on_close(self)
            except Exception as e:
                logger.error(f"[PAIRING] Listener on_close en erreur: {str(e)}")
        self.dispose()

    def _arm_countdown(self):
        self._disarm_countdown()
        self._countdown_job = self.scheduler.add_job(
            self.tick,
            "interval",
            seconds=self.tick_interval,
            id=f"pairing-countdown-{self.session_id}",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    def _arm_poll(self):
        if self._poll_job is not None:
            return
        self._poll_job = self.scheduler.add_job(
            self.poll,
            "interval",
            seconds=self.poll_interval,
            id=f"pairing-poll-{self.session_id}",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    def _disarm_countdown(self):
        self._remove_job(self._countdown_job)
        self._countdown_job = None

    def _disarm_poll(self):
        self._remove_job(self._poll_job)
        self._poll_job = None

    @staticmethod
    def _remove_job(job):
        if job is None:
            return
        try:
            job.remove()
        except JobLookupError:
            # Job déjà exécuté (date) ou retiré par le scheduler
            pass
