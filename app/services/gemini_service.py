import json
import logging
from typing import Any, Dict, Optional
from uuid import UUID

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from app.core.config import settings
from app.core.exceptions import AIServiceError
from app.services.audit_log import AuditLog

logger = logging.getLogger(__name__)

BASE_PROMPT = """Você é um assistente de vendas especialista em Mercado Livre.
Você deve responder perguntas de clientes de forma clara, profissional e persuasiva.
Sempre seja educado, prestativo e focado em ajudar o cliente a tomar a decisão de compra."""

GENERATION_CONFIG = {
    "temperature": 0.7,
    "top_p": 0.8,
    "top_k": 40,
    "max_output_tokens": 1024,
}

SAFETY_SETTINGS = [
    {"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
]


def build_prompt(question_text: str, custom_prompt: Optional[str] = None, item_details: Optional[Dict[str, Any]] = None) -> str:
    context = f"\nInformações do produto:\n{json.dumps(item_details, indent=2, ensure_ascii=False)}" if item_details else ""
    instructions = f"\nInstruções específicas do vendedor:\n{custom_prompt}" if custom_prompt else ""
    return (
        f"{BASE_PROMPT}\n{context}\n{instructions}\n\n"
        f'Pergunta do cliente: "{question_text}"\n\n'
        "Responda de forma direta e útil:"
    )


class GeminiService:
    """Rédaction des réponses aux questions des acheteurs avec Gemini."""

    def __init__(self, audit: AuditLog, api_key: Optional[str] = None, model_name: Optional[str] = None):
        self.audit = audit
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.model_name = model_name or settings.GEMINI_MODEL

    def _model(self, user_id: Optional[UUID], action: str) -> "genai.GenerativeModel":
        if not self.api_key:
            self.audit.record(user_id, action, "error", "API Key do Gemini não configurada")
            raise AIServiceError("Configuração da IA incompleta", configuration=True)
        genai.configure(api_key=self.api_key)
        return genai.GenerativeModel(
            self.model_name,
            generation_config=GENERATION_CONFIG,
            safety_settings=SAFETY_SETTINGS,
        )

    async def generate_answer(
        self,
        user_id: UUID,
        question_text: str,
        custom_prompt: Optional[str] = None,
        item_details: Optional[Dict[str, Any]] = None,
    ) -> str:
        model = self._model(user_id, "generate_response")
        self.audit.record(user_id, "generate_response", "info", "Iniciando geração de resposta com IA", {
            "questionLength": len(question_text),
            "hasCustomPrompt": bool(custom_prompt),
            "hasItemDetails": bool(item_details),
        })

        try:
            response = await model.generate_content_async(build_prompt(question_text, custom_prompt, item_details))
        except google_exceptions.GoogleAPIError as e:
            logger.warning("Erreur Gemini: %s", e)
            self.audit.record(user_id, "generate_response", "error", "Falha na API do Gemini", {"error": str(e)})
            raise AIServiceError("Falha ao comunicar com a IA", {"error": str(e)}) from e

        # response.text lève ValueError quand la réponse est bloquée ou vide
        try:
            text = response.text.strip() if response.candidates else ""
        except ValueError:
            text = ""
        if not text:
            self.audit.record(user_id, "generate_response", "error", "Resposta vazia da IA", None)
            raise AIServiceError("IA não conseguiu gerar resposta")

        usage = getattr(response, "usage_metadata", None)
        self.audit.record(user_id, "generate_response", "success", "Resposta gerada com sucesso", {
            "questionText": question_text[:100] + "...",
            "responseLength": len(text),
            "tokensUsed": getattr(usage, "total_token_count", 0) if usage else 0,
        })
        return text

    async def test_connection(self, user_id: UUID) -> Dict[str, Any]:
        try:
            model = self._model(user_id, "test_connection")
        except AIServiceError:
            return {"connected": False, "message": "API Key não configurada"}

        try:
            await model.generate_content_async("Responda apenas 'Conexão OK' para testar a API.")
        except google_exceptions.GoogleAPIError as e:
            message = "Falha na conexão com Gemini"
            self.audit.record(user_id, "test_connection", "error", message, {"error": str(e)})
            return {"connected": False, "message": message}

        message = "Conexão com Gemini testada com sucesso"
        self.audit.record(user_id, "test_connection", "success", message)
        return {"connected": True, "message": message}
