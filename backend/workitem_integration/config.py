"""Configurações do sistema usando Pydantic Settings."""
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_BACKEND_DIR = Path(__file__).resolve().parent.parent
_ENV_FILE = _BACKEND_DIR / ".env"
_DEFAULT_CONFIG_PATH = _BACKEND_DIR / "config" / "workitems.json"


def _is_pipeline_placeholder(v: object) -> bool:
    """Azure DevOps Pipeline envia literal '$(VAR)' quando a variável não está definida."""
    return isinstance(v, str) and v.strip().startswith("$(") and v.strip().endswith(")")


class Settings(BaseSettings):
    """Configurações da aplicação com validação automática."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE if _ENV_FILE.exists() else ".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Azure DevOps
    AZURE_DEVOPS_BASE_URL: str = Field(
        default="https://dev.azure.com",
        description="URL base da API REST do Azure DevOps",
    )
    AZURE_DEVOPS_API_VERSION: str = Field(
        default="7.1",
        description="Valor do parâmetro api-version",
    )

    # Fonte declarativa (conexões, tipos, estados, prioridades)
    WORKITEM_CONFIG_PATH: str = Field(
        default=str(_DEFAULT_CONFIG_PATH),
        description="Caminho do JSON com conexões, tipos de work item, estados e prioridades",
    )

    # Cache
    REDIS_URL: str = Field(
        default="",
        description="URL do Redis/Valkey compartilhado. Vazio = cache em memória do processo",
    )
    CACHE_MAX_ENTRIES: int = Field(
        default=256,
        description="Capacidade do cache em memória (fallback)",
    )

    # HTTP
    HTTP_TIMEOUT_SECONDS: float = Field(
        default=30,
        description="Timeout rígido por tentativa de chamada ao Azure DevOps",
    )
    HTTP_READ_RETRIES: int = Field(
        default=3,
        description="Retentativas (429/5xx) apenas para leituras GET; escritas nunca são repetidas",
    )

    # Canal de credencial gerenciada (Microsoft Entra ID)
    ENTRA_TENANT_ID: str = Field(default="", description="Tenant ID (Directory ID) do Microsoft Entra ID")
    ENTRA_CLIENT_ID: str = Field(default="", description="Client ID da aplicação registrada no Entra ID")
    ENTRA_CLIENT_SECRET: str = Field(default="", description="Client Secret da aplicação (obrigatório para o canal gerenciado)")
    ENTRA_CHANNEL_NAME: str = Field(
        default="azure-devops",
        description="Nome do canal gerenciado referenciado pelas conexões (credentialChannel)",
    )

    # Permissão de edição na API HTTP
    EDIT_TOKEN: str = Field(
        default="",
        description="Token exigido no header X-Edit-Token para escritas. Vazio = edição liberada",
    )

    # Logging
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Nível de log (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    @field_validator(
        "AZURE_DEVOPS_BASE_URL",
        "AZURE_DEVOPS_API_VERSION",
        "WORKITEM_CONFIG_PATH",
        "REDIS_URL",
        "ENTRA_TENANT_ID",
        "ENTRA_CLIENT_ID",
        "ENTRA_CLIENT_SECRET",
        "EDIT_TOKEN",
        mode="before",
    )
    @classmethod
    def parse_pipeline_placeholder(cls, v: object, info) -> object:
        """Trata variáveis não definidas do Azure DevOps Pipeline (volta ao default)."""
        if _is_pipeline_placeholder(v):
            return cls.model_fields[info.field_name].default
        return v

    @field_validator("AZURE_DEVOPS_BASE_URL", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def managed_channel_configured(self) -> bool:
        """Indica se o app do Entra ID para o canal gerenciado foi configurado."""
        return bool(self.ENTRA_TENANT_ID and self.ENTRA_CLIENT_ID and self.ENTRA_CLIENT_SECRET)


settings = Settings()
