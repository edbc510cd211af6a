from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from sqlalchemy import Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from app.models.integration import utcnow

class ItemStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"

class Product(SQLModel, table=True):
    """Copie locale d'une annonce Mercado Livre."""
    __tablename__ = "products"
    __table_args__ = (UniqueConstraint("user_id", "ml_item_id", name="uq_product_item"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: UUID = Field(index=True)
    ml_item_id: str = Field(index=True)  # ex: "MLB123456789"

    title: Optional[str] = None
    status: Optional[str] = None
    available_quantity: Optional[int] = None

    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))

class QuestionStatus(str, Enum):
    UNANSWERED = "UNANSWERED"
    ANSWERED = "ANSWERED"

class Question(SQLModel, table=True):
    __tablename__ = "questions"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: UUID = Field(index=True)

    # Infos Mercado Livre (pour éviter les doublons lors des synchros)
    ml_question_id: int = Field(unique=True, index=True)
    item_id: str = Field(index=True)
    text: str
    status: str = Field(default=QuestionStatus.UNANSWERED.value)
    answer_text: Optional[str] = None

    date_created: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    synced_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
