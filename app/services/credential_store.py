import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.core.exceptions import PersistenceFailed
from app.models.integration import UserIntegration, MERCADO_LIVRE

logger = logging.getLogger(__name__)

TOKEN_FIELDS = ("access_token", "refresh_token", "expires_in")


def as_utc(value: datetime) -> datetime:
    # SQLite renvoie des datetimes naïfs : on les considère en UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CredentialRecord(BaseModel):
    """Vue métier d'une ligne `user_integrations`."""

    user_id: UUID
    provider: str = MERCADO_LIVRE
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    issued_at: datetime
    is_connected: bool = False
    # Champs propres au fournisseur (user_id ML, token_type, scope...), transportés tels quels
    extra: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_row(cls, row: UserIntegration) -> "CredentialRecord":
        credentials = dict(row.credentials or {})
        return cls(
            user_id=row.user_id,
            provider=row.integration_type,
            access_token=credentials.pop("access_token", None),
            refresh_token=credentials.pop("refresh_token", None),
            expires_in=credentials.pop("expires_in", None),
            issued_at=as_utc(row.updated_at),
            is_connected=row.is_connected,
            extra=credentials,
        )

    def to_credentials(self) -> Dict[str, Any]:
        return {
            **self.extra,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_in": self.expires_in,
        }


class CredentialStore(Protocol):
    def get(self, user_id: UUID, provider: str) -> Optional[CredentialRecord]: ...

    def upsert(self, record: CredentialRecord) -> None: ...


class SQLCredentialStore:
    """Upsert clé (user_id, provider) sur la table `user_integrations`."""

    def __init__(self, db: Session):
        self.db = db

    def get_row(self, user_id: UUID, provider: str) -> Optional[UserIntegration]:
        statement = select(UserIntegration).where(
            UserIntegration.user_id == user_id,
            UserIntegration.integration_type == provider,
        )
        return self.db.exec(statement).first()

    def get(self, user_id: UUID, provider: str) -> Optional[CredentialRecord]:
        row = self.get_row(user_id, provider)
        if not row:
            return None
        # On relit toujours la base (un autre process a pu renouveler le token)
        self.db.refresh(row)
        if not row.credentials:
            return None
        return CredentialRecord.from_row(row)

    def upsert(self, record: CredentialRecord) -> None:
        try:
            row = self.get_row(record.user_id, record.provider)
            if not row:
                row = UserIntegration(user_id=record.user_id, integration_type=record.provider)
            # Fusion superficielle : on ne perd jamais un champ déjà présent
            row.credentials = {**(row.credentials or {}), **record.to_credentials()}
            row.updated_at = record.issued_at
            row.is_connected = record.is_connected
            self.db.add(row)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceFailed("Impossible de sauvegarder les credentials", details={"error": str(e)}) from e

    def mark_synced(self, user_id: UUID, provider: str, when: datetime) -> None:
        row = self.get_row(user_id, provider)
        if row:
            row.last_sync = when
            self.db.add(row)
            self.db.commit()
