from datetime import datetime
from typing import Any, Optional
from uuid import UUID
from sqlalchemy import Column, DateTime, JSON
from sqlmodel import Field, SQLModel

from app.models.integration import utcnow

class IntegrationLog(SQLModel, table=True):
    __tablename__ = "integration_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[UUID] = Field(default=None, index=True)
    integration_type: str = Field(index=True)

    action: str        # ex: "refresh_token", "oauth_callback"
    status: str        # "info" | "success" | "error"
    message: str
    details: Optional[Any] = Field(default=None, sa_column=Column(JSON, nullable=True))

    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
