from typing import Any, Optional


class IntegrationError(Exception):
    """Erreur de base pour tout ce qui touche aux intégrations externes."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class CredentialsNotFound(IntegrationError):
    """Aucun credential pour (user, provider) : l'utilisateur doit refaire le consentement."""


class TokenRefreshFailed(IntegrationError):
    """Le fournisseur a refusé le refresh-token grant (ou il est injoignable)."""


class ProviderNotConfigured(TokenRefreshFailed):
    """Client id / client secret absents côté serveur."""


class PersistenceFailed(IntegrationError):
    """Le credential renouvelé n'a pas pu être écrit en base."""


class OAuthCallbackError(IntegrationError):
    pass


class MarketplaceAPIError(IntegrationError):
    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Any] = None):
        super().__init__(message, details)
        self.status_code = status_code


class AIServiceError(IntegrationError):
    def __init__(self, message: str, details: Optional[Any] = None, configuration: bool = False):
        super().__init__(message, details)
        # True quand la clé API manque (erreur serveur, pas du fournisseur)
        self.configuration = configuration
