from dataclasses import dataclass
from typing import Annotated, Optional
from uuid import UUID
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlmodel import Session

from app.core.config import EnvProviderConfig
from app.core.security import decode_access_token
from app.db.session import get_db
from app.models.integration import GEMINI
from app.services.audit_log import AuditLog, SQLAuditSink
from app.services.credential_store import SQLCredentialStore
from app.services.gemini_service import GeminiService
from app.services.mercadolivre_service import MercadoLivreService, build_mercadolivre_service
from app.services.oauth_service import MercadoLivreOAuthService

# Le JWT est émis par le fournisseur d'identité externe, on ne fait que le vérifier
bearer_scheme = HTTPBearer(auto_error=False)

@dataclass(frozen=True)
class CurrentUser:
    id: UUID
    email: Optional[str] = None

def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> CurrentUser:
    """
    Cette fonction est le 'Videur'.
    Elle est appelée avant chaque route protégée.
    1. Elle récupère le token Bearer.
    2. Elle vérifie sa signature et son expiration.
    3. Elle retourne l'utilisateur (claim `sub`). Sinon, elle jette une erreur 401.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token de autorização necessário",
        )
    try:
        payload = decode_access_token(credentials.credentials)
        user_id = UUID(str(payload.get("sub")))
    except (JWTError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Usuário não autenticado",
        )
    return CurrentUser(id=user_id, email=payload.get("email"))

def get_mercadolivre_service(db: Annotated[Session, Depends(get_db)]) -> MercadoLivreService:
    return build_mercadolivre_service(db)

def get_oauth_service(db: Annotated[Session, Depends(get_db)]) -> MercadoLivreOAuthService:
    return MercadoLivreOAuthService(SQLCredentialStore(db), AuditLog(SQLAuditSink(db)), EnvProviderConfig())

def get_gemini_service(db: Annotated[Session, Depends(get_db)]) -> GeminiService:
    return GeminiService(AuditLog(SQLAuditSink(db), integration_type=GEMINI))
