from typing import Annotated, Optional
from urllib.parse import quote
from celery.result import AsyncResult
from fastapi import APIRouter, Depends, HTTPException, status
from starlette.responses import RedirectResponse

from app.api import deps
from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.exceptions import OAuthCallbackError, PersistenceFailed
from app.schemas.integrations import (
    AnswerRequest, AuthorizationURL, ConnectionStatus, ItemStatusUpdate,
    ItemStockUpdate, OperationResult, SyncTicket,
)
from app.services.mercadolivre_service import MercadoLivreService
from app.services.oauth_service import MercadoLivreOAuthService
from app.workers.sync_task import sync_questions_task

router = APIRouter()

CurrentUser = Annotated[deps.CurrentUser, Depends(deps.get_current_user)]
OAuthService = Annotated[MercadoLivreOAuthService, Depends(deps.get_oauth_service)]
MLService = Annotated[MercadoLivreService, Depends(deps.get_mercadolivre_service)]

# --- CONSENTEMENT OAUTH ---
@router.get("/oauth/start", response_model=AuthorizationURL)
def oauth_start(current_user: CurrentUser, oauth: OAuthService):
    """Renvoie l'URL de consentement Mercado Livre ; le front y redirige l'utilisateur."""
    return {"authUrl": oauth.build_authorization_url(current_user.id)}

@router.get("/oauth/callback", name="ml_oauth_callback")
async def oauth_callback(
    oauth: OAuthService,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
):
    # Appelé par le navigateur au retour du Mercado Livre : pas de Bearer ici, l'utilisateur est dans `state`
    try:
        await oauth.handle_callback(code=code, state=state, error=error)
    except (OAuthCallbackError, PersistenceFailed) as e:
        return RedirectResponse(url=f"{settings.SITE_URL}/settings?error={quote(e.message)}", status_code=302)
    return RedirectResponse(url=f"{settings.SITE_URL}/settings?connected=mercado_livre", status_code=302)

@router.get("/status", response_model=ConnectionStatus)
def connection_status(current_user: CurrentUser, oauth: OAuthService):
    return oauth.connection_status(current_user.id)

# --- ANNONCES ---
@router.put("/items/{item_id}/status", response_model=OperationResult)
async def update_item_status(item_id: str, body: ItemStatusUpdate, current_user: CurrentUser, ml: MLService):
    message = await ml.update_item_status(current_user.id, item_id, body.status)
    return {"message": message}

@router.put("/items/{item_id}/stock", response_model=OperationResult)
async def update_item_stock(item_id: str, body: ItemStockUpdate, current_user: CurrentUser, ml: MLService):
    message = await ml.update_item_stock(current_user.id, item_id, body.available_quantity)
    return {"message": message}

# --- QUESTIONS ---
@router.post("/questions/sync", response_model=SyncTicket, status_code=202)
def sync_questions(current_user: CurrentUser):
    """Lance la synchro en arrière-plan (Celery) et renvoie l'ID du ticket."""
    task = sync_questions_task.delay(str(current_user.id))
    return {"task_id": task.id}

@router.get("/questions/sync/{task_id}")
def sync_questions_status(task_id: str, current_user: CurrentUser):
    task_result = AsyncResult(task_id, app=celery_app)

    if task_result.state == 'PENDING':
        return {"status": "processing"}
    elif task_result.state == 'SUCCESS':
        result = dict(task_result.result or {})
        # Le résultat porte l'utilisateur qui a lancé la synchro
        if result.pop("user_id", None) != str(current_user.id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tarefa não encontrada")
        return {"status": "completed", "result": result}
    elif task_result.state == 'FAILURE':
        return {"status": "failed", "error": str(task_result.result)}

    return {"status": task_result.state}

@router.post("/questions/{question_id}/answer", response_model=OperationResult)
async def answer_question(question_id: int, body: AnswerRequest, current_user: CurrentUser, ml: MLService):
    await ml.answer_question(current_user.id, question_id, body.text)
    return {"message": "Pergunta respondida"}
