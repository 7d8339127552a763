"""Autenticação no Azure DevOps: credencial gerenciada (Entra ID) com fallback para PAT."""
import base64
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol, Sequence, TypeVar

from msal import ConfidentialClientApplication

from workitem_integration.config import settings
from workitem_integration.exceptions import AuthenticationError, ConfigurationError
from workitem_integration.models.config_models import ConnectionConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Resource ID do Azure DevOps no Entra ID
AZURE_DEVOPS_SCOPE = "499b84ac-1321-427f-aa17-267ca6975798/.default"


def encode_pat(token: str) -> str:
    """Basic auth do Azure DevOps: usuário vazio + PAT."""
    return base64.b64encode(f":{token}".encode("utf-8")).decode("utf-8")


class ManagedCredentialProvider(Protocol):
    def get_access_token(self, channel: str) -> str: ...


class EntraCredentialProvider:
    """Obtém access token do canal gerenciado via client credentials (MSAL), com cache até 5 min antes de expirar."""

    def __init__(
        self,
        tenant_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        channel_name: Optional[str] = None,
        app: Optional[ConfidentialClientApplication] = None,
    ) -> None:
        self.tenant_id = tenant_id or settings.ENTRA_TENANT_ID
        self.client_id = client_id or settings.ENTRA_CLIENT_ID
        self.client_secret = client_secret or settings.ENTRA_CLIENT_SECRET
        self.channel_name = channel_name or settings.ENTRA_CHANNEL_NAME
        self.scope = [AZURE_DEVOPS_SCOPE]
        self._app = app
        self._access_token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        self._lock = threading.Lock()

    @property
    def provisioned(self) -> bool:
        return self._app is not None or bool(self.tenant_id and self.client_id and self.client_secret)

    def _get_app(self) -> ConfidentialClientApplication:
        if self._app is None:
            self._app = ConfidentialClientApplication(
                client_id=self.client_id,
                client_credential=self.client_secret,
                authority=f"https://login.microsoftonline.com/{self.tenant_id}",
            )
        return self._app

    def get_access_token(self, channel: str) -> str:
        if channel != self.channel_name:
            raise AuthenticationError(f"Canal de credencial '{channel}' não provisionado")
        if not self.provisioned:
            raise AuthenticationError("Canal gerenciado sem ENTRA_TENANT_ID/ENTRA_CLIENT_ID/ENTRA_CLIENT_SECRET")
        with self._lock:
            if self._access_token and self._token_expires_at and datetime.now() < self._token_expires_at:
                return self._access_token
            try:
                result = self._get_app().acquire_token_for_client(scopes=self.scope)
            except Exception as e:
                raise AuthenticationError(f"Falha ao obter token do canal gerenciado: {e}") from e
            if "access_token" not in result:
                err = result.get("error_description", result.get("error", "Erro desconhecido"))
                raise AuthenticationError(f"Falha na autenticação gerenciada: {err}")
            self._access_token = result["access_token"]
            expires_in = int(result.get("expires_in", 3600))
            self._token_expires_at = datetime.now() + timedelta(seconds=expires_in - 300)
            return self._access_token

    def clear_token_cache(self) -> None:
        with self._lock:
            self._access_token = None
            self._token_expires_at = None


class AuthStrategy:
    """Estratégia de autenticação: diz se se aplica à conexão e produz os headers."""

    name = "base"

    def is_configured(self, config: ConnectionConfig) -> bool:
        raise NotImplementedError

    def headers(self, config: ConnectionConfig) -> dict[str, str]:
        raise NotImplementedError


class ManagedCredentialStrategy(AuthStrategy):
    name = "managed"

    def __init__(self, provider: Optional[ManagedCredentialProvider] = None) -> None:
        self.provider = provider or EntraCredentialProvider()

    def is_configured(self, config: ConnectionConfig) -> bool:
        return bool(config.credential_channel)

    def headers(self, config: ConnectionConfig) -> dict[str, str]:
        token = self.provider.get_access_token(config.credential_channel or "")
        return {"Authorization": f"Bearer {token}"}


class SharedSecretStrategy(AuthStrategy):
    name = "secret"

    def is_configured(self, config: ConnectionConfig) -> bool:
        return bool(config.secret_token)

    def headers(self, config: ConnectionConfig) -> dict[str, str]:
        return {"Authorization": f"Basic {encode_pat(config.secret_token or '')}"}


class AuthSession:
    """
    Handle devolvido por AuthResolver.authenticate: executa chamadas com a cadeia de estratégias.
    A primeira estratégia que funciona fica fixa para as chamadas seguintes do mesmo handle.
    """

    def __init__(self, config: ConnectionConfig, chain: Sequence[AuthStrategy]) -> None:
        self.config = config
        self.chain = tuple(chain)
        self.active: Optional[AuthStrategy] = None
        self.attempts = 0

    def execute(self, call: Callable[[dict[str, str]], T]) -> T:
        """
        Chama `call(headers)` com cada estratégia em ordem até a primeira sem AuthenticationError.
        A próxima estratégia só é tentada depois que a anterior terminou e falhou.
        O erro da última estratégia propaga sem novas tentativas.
        """
        chain = (self.active,) if self.active else self.chain
        for idx, strategy in enumerate(chain):
            self.attempts += 1
            try:
                result = call(strategy.headers(self.config))
            except AuthenticationError as e:
                if idx == len(chain) - 1:
                    raise
                logger.warning(
                    "Autenticação '%s' falhou para conexão %s (%s); tentando '%s'",
                    strategy.name, self.config.name, e, chain[idx + 1].name,
                )
                continue
            self.active = strategy
            return result
        raise AuthenticationError("Nenhuma estratégia de autenticação disponível")


class AuthResolver:
    """Cadeia ordenada de estratégias: credencial gerenciada primeiro, PAT como fallback."""

    def __init__(self, strategies: Optional[Sequence[AuthStrategy]] = None) -> None:
        self.strategies = tuple(strategies) if strategies is not None else (
            ManagedCredentialStrategy(),
            SharedSecretStrategy(),
        )

    def chain_for(self, config: ConnectionConfig) -> tuple[AuthStrategy, ...]:
        """Estratégias configuradas para a conexão; nenhuma = ConfigurationError antes de qualquer rede."""
        chain = tuple(s for s in self.strategies if s.is_configured(config))
        if not chain:
            raise ConfigurationError(
                f"Conexão '{config.name}' sem credencial: informe credentialChannel ou secretToken"
            )
        return chain

    def authenticate(self, config: ConnectionConfig) -> AuthSession:
        return AuthSession(config, self.chain_for(config))
