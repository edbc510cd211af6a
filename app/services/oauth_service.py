import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

import httpx
from authlib.integrations.base_client import OAuthError
from authlib.integrations.httpx_client import AsyncOAuth2Client
from authlib.oauth2.rfc6749.parameters import prepare_grant_uri

from app.core.config import ProviderConfigProvider, settings
from app.core.exceptions import OAuthCallbackError, ProviderNotConfigured
from app.core.security import create_oauth_state, read_oauth_state
from app.models.integration import MERCADO_LIVRE
from app.services.audit_log import AuditLog
from app.services.credential_store import CredentialRecord, SQLCredentialStore, as_utc

logger = logging.getLogger(__name__)

# Champs du token ML conservés tels quels à côté des tokens
OPAQUE_TOKEN_FIELDS = ("user_id", "token_type", "scope")


def callback_url() -> str:
    return f"{settings.BASE_URL}/api/v1/mercadolivre/oauth/callback"


class MercadoLivreOAuthService:
    """
    Flux de consentement (authorization code grant) : crée la ligne
    `user_integrations` que `TokenManager` renouvellera ensuite.
    """

    def __init__(
        self,
        store: SQLCredentialStore,
        audit: AuditLog,
        config: ProviderConfigProvider,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.audit = audit
        self.config = config
        self.transport = transport

    def _client(self, config) -> AsyncOAuth2Client:
        return AsyncOAuth2Client(
            client_id=config.client_id,
            client_secret=config.client_secret,
            token_endpoint_auth_method="client_secret_post",
            redirect_uri=callback_url(),
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            transport=self.transport,
        )

    def build_authorization_url(self, user_id: UUID) -> str:
        config = self.config.get()
        if not config.client_id:
            self.audit.record(user_id, "oauth_start", "error", "CLIENT_ID do Mercado Livre não configurado")
            raise ProviderNotConfigured("Configuração incompleta")

        auth_url = prepare_grant_uri(
            settings.ML_AUTH_URL,
            client_id=config.client_id,
            response_type="code",
            redirect_uri=callback_url(),
            state=create_oauth_state(user_id),
        )
        self.audit.record(user_id, "oauth_start", "success", "URL de autorização gerada")
        return auth_url

    async def handle_callback(self, code: Optional[str], state: Optional[str], error: Optional[str] = None) -> UUID:
        """Échange le code contre les tokens et renvoie l'id de l'utilisateur connecté."""
        user_id = None
        if state:
            try:
                user_id = UUID(read_oauth_state(state))
            except ValueError as e:
                self.audit.record(None, "oauth_callback", "error", "State inválido no callback", {"error": str(e)})
                raise OAuthCallbackError("Parâmetros inválidos") from e

        if error:
            self.audit.record(user_id, "oauth_callback", "error", "Usuário cancelou autorização", {"error": error})
            raise OAuthCallbackError("Autorização cancelada", {"error": error})

        if not code or not user_id:
            self.audit.record(user_id, "oauth_callback", "error", "Parâmetros inválidos no callback", {"code": bool(code), "state": bool(state)})
            raise OAuthCallbackError("Parâmetros inválidos")

        config = self.config.get()
        if not config.is_complete:
            self.audit.record(user_id, "oauth_callback", "error", "ML_CLIENT_ID ou ML_CLIENT_SECRET não configurados")
            raise ProviderNotConfigured("Configuração incompleta")

        try:
            async with self._client(config) as client:
                token = await client.fetch_token(config.token_endpoint_url, code=code, grant_type="authorization_code")
        except (OAuthError, httpx.HTTPError, ValueError) as e:
            logger.warning("Échec de l'échange du code Mercado Livre: %s", e)
            self.audit.record(user_id, "oauth_callback", "error", "Falha ao obter tokens", {"error": str(e)})
            raise OAuthCallbackError("Falha na autenticação", {"error": str(e)}) from e

        if not token.get("access_token"):
            self.audit.record(user_id, "oauth_callback", "error", "Resposta sem access_token", None)
            raise OAuthCallbackError("Falha na autenticação")

        record = CredentialRecord(
            user_id=user_id,
            provider=MERCADO_LIVRE,
            access_token=token["access_token"],
            refresh_token=token.get("refresh_token"),
            expires_in=token.get("expires_in"),
            issued_at=datetime.now(timezone.utc),
            is_connected=True,
            extra={key: token[key] for key in OPAQUE_TOKEN_FIELDS if token.get(key) is not None},
        )
        # PersistenceFailed remonte : sans sauvegarde, la connexion n'existe pas
        self.store.upsert(record)

        self.audit.record(user_id, "oauth_callback", "success", "Integração com Mercado Livre conectada com sucesso")
        return user_id

    def connection_status(self, user_id: UUID) -> Dict[str, Any]:
        row = self.store.get_row(user_id, MERCADO_LIVRE)
        if not row:
            return {"connected": False, "last_sync": None, "updated_at": None}
        return {
            "connected": row.is_connected,
            "last_sync": as_utc(row.last_sync).isoformat() if row.last_sync else None,
            "updated_at": as_utc(row.updated_at).isoformat(),
        }
