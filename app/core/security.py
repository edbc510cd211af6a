from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Union
from jose import jwt, JWTError
from app.core.config import settings

ALGORITHM = settings.JWT_ALGORITHM
STATE_AUDIENCE = "ml-oauth-state"
STATE_TTL = timedelta(minutes=10)

def create_access_token(subject: Union[str, Any], expires_delta: timedelta = None) -> str:
    """Génère un JWT signé avec notre SECRET_KEY (même format que le fournisseur d'identité)."""
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        # Par défaut, le token est valide 1 heure
        expire = datetime.now(timezone.utc) + timedelta(hours=1)

    to_encode = {"exp": expire, "sub": str(subject)}
    if settings.JWT_AUDIENCE:
        to_encode["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)

def decode_access_token(token: str) -> Dict[str, Any]:
    """Lève JWTError si la signature, l'expiration ou l'audience sont invalides."""
    options = {"verify_aud": bool(settings.JWT_AUDIENCE)}
    return jwt.decode(
        token,
        settings.SECRET_KEY,
        algorithms=[ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        options=options,
    )

def create_oauth_state(user_id: Union[str, Any]) -> str:
    """
    Le paramètre `state` transporte l'id utilisateur à travers le consentement
    Mercado Livre. On le signe pour qu'un tiers ne puisse pas lier son compte
    vendeur à un autre utilisateur.
    """
    to_encode = {
        "sub": str(user_id),
        "aud": STATE_AUDIENCE,
        "exp": datetime.now(timezone.utc) + STATE_TTL,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)

def read_oauth_state(state: str) -> str:
    try:
        payload = jwt.decode(state, settings.SECRET_KEY, algorithms=[ALGORITHM], audience=STATE_AUDIENCE)
    except JWTError as e:
        raise ValueError(f"State OAuth invalide: {e}") from e
    user_id = payload.get("sub")
    if not user_id:
        raise ValueError("State OAuth sans utilisateur")
    return user_id
