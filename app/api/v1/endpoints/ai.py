from typing import Annotated
from fastapi import APIRouter, Depends

from app.api import deps
from app.schemas.ai import ConnectionTestResponse, GenerateAnswerRequest, GenerateAnswerResponse
from app.services.gemini_service import GeminiService

router = APIRouter()

@router.post("/generate", response_model=GenerateAnswerResponse)
async def generate_answer(
    request: GenerateAnswerRequest,
    current_user: Annotated[deps.CurrentUser, Depends(deps.get_current_user)],
    gemini: Annotated[GeminiService, Depends(deps.get_gemini_service)],
):
    """
    Rédige une réponse à la question d'un acheteur.
    Le vendeur la relit avant de l'envoyer via /mercadolivre/questions/{id}/answer.
    """
    text = await gemini.generate_answer(
        current_user.id,
        request.question_text,
        custom_prompt=request.custom_prompt,
        item_details=request.item_details,
    )
    return {"response": text}

@router.get("/test", response_model=ConnectionTestResponse)
async def test_connection(
    current_user: Annotated[deps.CurrentUser, Depends(deps.get_current_user)],
    gemini: Annotated[GeminiService, Depends(deps.get_gemini_service)],
):
    return await gemini.test_connection(current_user.id)
