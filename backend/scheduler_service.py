"""
Scheduler pour les tâches automatiques CRM Conexões
- Timers des sessions de pairing (countdown, poll, fermeture) ajoutés à la volée
- Synchronisation périodique des statuts de connexion
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import CONNECTION_SYNC_MINUTES

logger = logging.getLogger("scheduler")


class TaskScheduler:
    """Gestionnaire de tâches planifiées"""

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone="UTC")

    def start(self):
        """Démarre le scheduler avec les tâches de fond"""
        self.scheduler.add_job(
            self.sync_connections,
            IntervalTrigger(minutes=CONNECTION_SYNC_MINUTES),
            id="sync_connection_statuses",
            name="Synchronisation statuts connexions",
            replace_existing=True
        )

        if not self.scheduler.running:
            self.scheduler.start()
        logger.info("Scheduler démarré avec succès")

    def stop(self):
        """Arrête le scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler arrêté")

    # ==================== TÂCHES PLANIFIÉES ====================

    async def sync_connections(self):
        """Rafraîchit les connexions en attente depuis le statut distant"""
        # Import ici pour éviter les imports circulaires
        from services.connections import sync_connection_statuses

        try:
            updated = await sync_connection_statuses()
            if updated:
                logger.info(f"Synchronisation connexions: {updated} mise(s) à jour")
        except Exception as e:
            logger.error(f"Erreur synchronisation connexions: {str(e)}")


task_scheduler = TaskScheduler()
