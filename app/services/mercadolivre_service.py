import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.core.config import EnvProviderConfig, settings
from app.core.exceptions import MarketplaceAPIError
from app.models.integration import MERCADO_LIVRE
from app.models.marketplace import ItemStatus, Product, Question, QuestionStatus
from app.services.audit_log import AuditLog, SQLAuditSink
from app.services.credential_store import SQLCredentialStore
from app.services.token_manager import TokenManager

logger = logging.getLogger(__name__)


def _parse_ml_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)
    except ValueError:
        return None


class MercadoLivreService:
    """
    Appels à l'API REST Mercado Livre pour le compte d'un utilisateur.
    Chaque opération demande d'abord un token valide au TokenManager.
    """

    def __init__(
        self,
        db: Session,
        tokens: TokenManager,
        audit: AuditLog,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.db = db
        self.tokens = tokens
        self.audit = audit
        self.transport = transport

    async def _request(self, user_id: UUID, method: str, path: str, **kwargs) -> Any:
        access_token = await self.tokens.get_valid_access_token(user_id)
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        async with httpx.AsyncClient(
            base_url=settings.ML_API_BASE_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            transport=self.transport,
        ) as client:
            try:
                response = await client.request(method, path, headers=headers, **kwargs)
            except httpx.HTTPError as e:
                raise MarketplaceAPIError("Mercado Livre indisponível.", details={"error": str(e)}) from e

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {"message": response.text[:500]}
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning("Erreur API Mercado Livre %s %s -> %s", method, path, response.status_code)
            raise MarketplaceAPIError(
                message or "Erro desconhecido ao chamar o Mercado Livre.",
                status_code=response.status_code,
                details=body,
            )
        return response.json() if response.content else {}

    def _sync_product(self, user_id: UUID, item_id: str, **fields) -> None:
        """Mise à jour locale "best effort" : l'action sur le ML a déjà réussi."""
        try:
            statement = select(Product).where(Product.user_id == user_id, Product.ml_item_id == item_id)
            product = self.db.exec(statement).first()
            if not product:
                product = Product(user_id=user_id, ml_item_id=item_id)
            for key, value in fields.items():
                setattr(product, key, value)
            product.updated_at = datetime.now(timezone.utc)
            self.db.add(product)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self.audit.record(
                user_id, "update_db_sync", "error",
                f"Falha ao sincronizar o item {item_id} no banco local.", {"error": str(e)},
            )

    # --- ANNONCES ---
    async def update_item_status(self, user_id: UUID, item_id: str, status: ItemStatus) -> str:
        status = ItemStatus(status)
        try:
            await self._request(user_id, "PUT", f"/items/{item_id}", json={"status": status.value})
        except MarketplaceAPIError as e:
            self.audit.record(user_id, "update_status", "error", e.message, {"item_id": item_id})
            raise

        self._sync_product(user_id, item_id, status=status.value)
        message = f"Anúncio {'ativado' if status == ItemStatus.ACTIVE else 'pausado'}."
        self.audit.record(user_id, "update_status", "success", message, {"item_id": item_id, "status": status.value})
        return message

    async def update_item_stock(self, user_id: UUID, item_id: str, available_quantity: int) -> str:
        if available_quantity < 0:
            raise ValueError("available_quantity doit être positif")
        try:
            await self._request(
                user_id, "PUT", f"/items/{item_id}", json={"available_quantity": available_quantity}
            )
        except MarketplaceAPIError as e:
            self.audit.record(user_id, "update_stock", "error", e.message, {"item_id": item_id})
            raise

        self._sync_product(user_id, item_id, available_quantity=available_quantity)
        message = f"Estoque do item {item_id} atualizado para {available_quantity}."
        self.audit.record(user_id, "update_stock", "success", message, {"item_id": item_id, "available_quantity": available_quantity})
        return message

    # --- PERGUNTAS ---
    async def _seller_id(self, user_id: UUID) -> str:
        row = SQLCredentialStore(self.db).get_row(user_id, MERCADO_LIVRE)
        seller_id = (row.credentials or {}).get("user_id") if row else None
        if seller_id:
            return str(seller_id)
        me = await self._request(user_id, "GET", "/users/me")
        return str(me["id"])

    async def sync_questions(self, user_id: UUID) -> int:
        self.audit.record(user_id, "sync_questions", "info", "Iniciando sincronização de perguntas")
        try:
            seller_id = await self._seller_id(user_id)
            data = await self._request(
                user_id, "GET", "/questions/search",
                params={"seller_id": seller_id, "status": QuestionStatus.UNANSWERED.value, "api_version": "4"},
            )
        except MarketplaceAPIError as e:
            self.audit.record(user_id, "sync_questions", "error", e.message, e.details)
            raise

        questions: List[Dict[str, Any]] = data.get("questions", [])
        now = datetime.now(timezone.utc)
        for item in questions:
            existing = self.db.exec(select(Question).where(Question.ml_question_id == item["id"])).first()
            question = existing or Question(user_id=user_id, ml_question_id=item["id"], item_id=item.get("item_id", ""), text=item.get("text", ""))
            question.text = item.get("text", question.text)
            question.status = item.get("status", question.status)
            question.date_created = _parse_ml_date(item.get("date_created"))
            question.synced_at = now
            self.db.add(question)
        self.db.commit()

        SQLCredentialStore(self.db).mark_synced(user_id, MERCADO_LIVRE, now)
        self.audit.record(user_id, "sync_questions", "success", "Sincronização concluída", {"questionsFound": len(questions)})
        return len(questions)

    async def answer_question(self, user_id: UUID, question_id: int, text: str) -> None:
        try:
            await self._request(user_id, "POST", "/answers", json={"question_id": question_id, "text": text})
        except MarketplaceAPIError as e:
            self.audit.record(user_id, "answer_question", "error", e.message, {"question_id": question_id})
            raise

        question = self.db.exec(
            select(Question).where(Question.user_id == user_id, Question.ml_question_id == question_id)
        ).first()
        if question:
            question.status = QuestionStatus.ANSWERED.value
            question.answer_text = text
            self.db.add(question)
            self.db.commit()
        self.audit.record(user_id, "answer_question", "success", "Pergunta respondida", {"question_id": question_id})


def build_mercadolivre_service(db: Session) -> MercadoLivreService:
    """Câblage par défaut (API et worker) : stockage SQL + config lue dans l'environnement."""
    audit = AuditLog(SQLAuditSink(db))
    tokens = TokenManager(SQLCredentialStore(db), audit, EnvProviderConfig())
    return MercadoLivreService(db, tokens, audit)
