from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID
from sqlalchemy import Column, DateTime, JSON, UniqueConstraint
from sqlmodel import Field, SQLModel

MERCADO_LIVRE = "mercado_livre"
GEMINI = "gemini"

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class UserIntegration(SQLModel, table=True):
    """
    Une ligne par (utilisateur, fournisseur). Les tokens OAuth et les champs
    propres au fournisseur vivent dans le document JSON `credentials`.
    """
    __tablename__ = "user_integrations"
    __table_args__ = (UniqueConstraint("user_id", "integration_type", name="uq_user_integration"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    # L'utilisateur appartient au fournisseur d'identité externe : pas de clé étrangère
    user_id: UUID = Field(index=True)
    integration_type: str = Field(index=True)  # ex: "mercado_livre"

    is_connected: bool = Field(default=False)
    # access_token, refresh_token, expires_in + champs opaques (user_id ML, token_type...)
    # On stocke les tokens en clair pour l'instant (MVP), en prod il faudrait les chiffrer.
    credentials: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    # Instant d'émission du couple access/refresh token actuel
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    last_sync: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
