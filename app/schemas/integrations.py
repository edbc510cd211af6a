from typing import Optional
from pydantic import BaseModel, Field

from app.models.marketplace import ItemStatus

class AuthorizationURL(BaseModel):
    authUrl: str

class ConnectionStatus(BaseModel):
    connected: bool
    last_sync: Optional[str] = None
    updated_at: Optional[str] = None

class ItemStatusUpdate(BaseModel):
    status: ItemStatus

class ItemStockUpdate(BaseModel):
    available_quantity: int = Field(ge=0)

class AnswerRequest(BaseModel):
    text: str = Field(min_length=1, max_length=2000)

class OperationResult(BaseModel):
    success: bool = True
    message: str

class SyncTicket(BaseModel):
    task_id: str
    status: str = "processing"
