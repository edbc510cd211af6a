import asyncio
import logging
from uuid import UUID

from sqlmodel import Session

from app.core.celery_app import celery_app
from app.db.session import engine
from app.services.mercadolivre_service import build_mercadolivre_service

logger = logging.getLogger(__name__)

@celery_app.task(acks_late=True, time_limit=300)
def sync_questions_task(user_id: str) -> dict:
    """
    Synchronise les questions non répondues d'un vendeur.
    Tourne dans le conteneur Worker, hors du cycle de la requête HTTP.
    """
    logger.info("Synchronisation des questions pour %s", user_id)
    with Session(engine) as db:
        service = build_mercadolivre_service(db)
        # asyncio.run() exécute la coroutine depuis le contexte synchrone de Celery
        found = asyncio.run(service.sync_questions(UUID(user_id)))
    logger.info("Synchronisation terminée: %s questions", found)
    # On laisse remonter les exceptions pour que Celery marque la tâche 'FAILURE'
    return {"user_id": user_id, "questionsFound": found}
