import logging
from typing import Any, Optional, Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.models.integration import MERCADO_LIVRE
from app.models.integration_log import IntegrationLog

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    def write(self, entry: IntegrationLog) -> None: ...


class SQLAuditSink:
    def __init__(self, db: Session):
        self.db = db

    def write(self, entry: IntegrationLog) -> None:
        try:
            self.db.add(entry)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise


class AuditLog:
    """
    Canal secondaire "best effort" vers `integration_logs`.
    Une erreur du sink n'est jamais propagée à l'appelant.
    """

    def __init__(self, sink: AuditSink, integration_type: str = MERCADO_LIVRE):
        self.sink = sink
        self.integration_type = integration_type

    def record(
        self,
        user_id: Optional[UUID],
        action: str,
        status: str,
        message: str,
        details: Optional[Any] = None,
    ) -> None:
        entry = IntegrationLog(
            user_id=user_id,
            integration_type=self.integration_type,
            action=action,
            status=status,
            message=message,
            details=details,
        )
        try:
            self.sink.write(entry)
        except Exception:
            logger.warning("Impossible d'écrire le log d'intégration %s/%s", action, status, exc_info=True)
