"""
Cycle de vie du token OAuth Mercado Livre.

Tous les appels vers l'API Mercado Livre passent par
`TokenManager.get_valid_access_token` : le token stocké est renvoyé tel quel
tant qu'il est frais, sinon il est renouvelé une seule fois avec le refresh
token puis sauvegardé (fusion, pas remplacement).
"""
import asyncio
import logging
import weakref
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import UUID

import httpx

from app.core.config import ProviderConfigProvider, settings
from app.core.exceptions import (
    CredentialsNotFound,
    PersistenceFailed,
    ProviderNotConfigured,
    TokenRefreshFailed,
)
from app.models.integration import MERCADO_LIVRE
from app.services.audit_log import AuditLog
from app.services.credential_store import CredentialRecord, CredentialStore

logger = logging.getLogger(__name__)

DEFAULT_SAFETY_MARGIN = timedelta(seconds=settings.TOKEN_SAFETY_MARGIN_SECONDS)
REFRESH_ACTION = "refresh_token"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshLockRegistry:
    """
    Un verrou asyncio par (user_id, provider). Ne protège qu'un seul process :
    plusieurs workers derrière un load balancer peuvent encore se doubler.
    """

    def __init__(self):
        # Un verrou disparaît dès que plus aucun appel ne le tient
        self._locks = weakref.WeakValueDictionary()

    def get(self, user_id: UUID, provider: str) -> asyncio.Lock:
        key = (str(user_id), provider)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock


refresh_locks = RefreshLockRegistry()


def expires_at(record: CredentialRecord, safety_margin: timedelta) -> Optional[datetime]:
    if record.expires_in is None:
        return None
    return record.issued_at + timedelta(seconds=record.expires_in) - safety_margin


def is_fresh(record: CredentialRecord, now: datetime, safety_margin: timedelta = DEFAULT_SAFETY_MARGIN) -> bool:
    deadline = expires_at(record, safety_margin)
    # Strictement avant : à la limite exacte, on renouvelle
    return deadline is not None and now < deadline


class TokenManager:
    def __init__(
        self,
        store: CredentialStore,
        audit: AuditLog,
        config: ProviderConfigProvider,
        provider: str = MERCADO_LIVRE,
        safety_margin: timedelta = DEFAULT_SAFETY_MARGIN,
        clock: Callable[[], datetime] = utcnow,
        locks: RefreshLockRegistry = refresh_locks,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = settings.HTTP_TIMEOUT_SECONDS,
    ):
        self.store = store
        self.audit = audit
        self.config = config
        self.provider = provider
        self.safety_margin = safety_margin
        self.clock = clock
        self.locks = locks
        self.transport = transport
        self.timeout = timeout

    def _load(self, user_id: UUID) -> CredentialRecord:
        record = self.store.get(user_id, self.provider)
        if not record or not record.access_token:
            logger.warning("Aucun credential %s pour l'utilisateur %s", self.provider, user_id)
            self.audit.record(user_id, REFRESH_ACTION, "error", "Credenciais do Mercado Livre não encontradas.")
            raise CredentialsNotFound("Credenciais do Mercado Livre não encontradas para este usuário.")
        return record

    async def get_valid_access_token(self, user_id: UUID) -> str:
        record = self._load(user_id)
        if is_fresh(record, self.clock(), self.safety_margin):
            return record.access_token

        async with self.locks.get(user_id, self.provider):
            # Un autre appel a peut-être déjà renouvelé pendant qu'on attendait le verrou
            record = self._load(user_id)
            if is_fresh(record, self.clock(), self.safety_margin):
                return record.access_token
            return await self._refresh(record)

    async def _refresh(self, record: CredentialRecord) -> str:
        user_id = record.user_id
        self.audit.record(user_id, REFRESH_ACTION, "info", "Token de acesso expirado. Renovando...")

        config = self.config.get()
        if not config.is_complete:
            self.audit.record(user_id, REFRESH_ACTION, "error", "ML_CLIENT_ID ou ML_CLIENT_SECRET não configurados.")
            raise ProviderNotConfigured("Configuração de integração do Mercado Livre incompleta no servidor.")

        if not record.refresh_token:
            self.audit.record(user_id, REFRESH_ACTION, "error", "Nenhum refresh token armazenado.")
            raise TokenRefreshFailed("Sessão Mercado Livre expirada, reconecte a integração.")

        payload = {
            "grant_type": "refresh_token",
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "refresh_token": record.refresh_token,
        }
        headers = {"Accept": "application/json", "Content-Type": "application/x-www-form-urlencoded"}

        logger.info("Renouvellement du token %s pour l'utilisateur %s", self.provider, user_id)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(config.token_endpoint_url, data=payload, headers=headers)
        except httpx.HTTPError as e:
            self.audit.record(user_id, REFRESH_ACTION, "error", "Falha de rede ao renovar token.", {"error": str(e)})
            raise TokenRefreshFailed("Não foi possível renovar a autenticação com o Mercado Livre.", {"error": str(e)}) from e

        new_tokens = self._parse(response)
        if not response.is_success or not new_tokens.get("access_token"):
            logger.warning("Échec du refresh %s (HTTP %s)", self.provider, response.status_code)
            self.audit.record(user_id, REFRESH_ACTION, "error", "Falha ao renovar token.", new_tokens)
            raise TokenRefreshFailed("Não foi possível renovar a autenticação com o Mercado Livre.", new_tokens)

        renewed = record.model_copy(update={
            "access_token": new_tokens["access_token"],
            # Le ML ne renvoie pas toujours un nouveau refresh token : on garde l'ancien
            "refresh_token": new_tokens.get("refresh_token") or record.refresh_token,
            "expires_in": new_tokens.get("expires_in", record.expires_in),
            "issued_at": self.clock(),
        })

        try:
            self.store.upsert(renewed)
        except PersistenceFailed as e:
            # Le nouveau token reste valide : le prochain appel refera simplement un refresh
            logger.error("Token %s renouvelé mais non sauvegardé pour %s", self.provider, user_id)
            self.audit.record(user_id, REFRESH_ACTION, "error", "Falha ao salvar novos tokens no banco de dados.", e.details)
            return renewed.access_token

        self.audit.record(user_id, REFRESH_ACTION, "success", "Token renovado com sucesso.", {"expires_in": renewed.expires_in})
        return renewed.access_token

    @staticmethod
    def _parse(response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError:
            return {"status": response.status_code, "body": response.text[:500]}
        if not isinstance(body, dict):
            return {"status": response.status_code, "body": body}
        return body
