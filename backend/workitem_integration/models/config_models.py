"""Registros da fonte declarativa: conexões, tipos de work item, estados e prioridades."""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from workitem_integration.exceptions import ValidationError
from workitem_integration.utils.field_utils import STATE_FIELD, coerce_numeric, is_known_field


class ConnectionConfig(BaseModel):
    """Par organização/projeto do Azure DevOps e seus mecanismos de autenticação."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    label: str = ""
    organization: str
    project: str
    credential_channel: Optional[str] = Field(default=None, alias="credentialChannel")
    secret_token: Optional[str] = Field(default=None, alias="secretToken", repr=False, exclude=True)
    base_url: Optional[str] = Field(default=None, alias="baseUrl")
    api_version: Optional[str] = Field(default=None, alias="apiVersion")

    @field_validator("name", "organization", "project")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("campo obrigatório vazio")
        return v

    @field_validator("credential_channel", "secret_token", mode="before")
    @classmethod
    def blank_as_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def has_credentials(self) -> bool:
        """Pelo menos um mecanismo de autenticação declarado."""
        return bool(self.credential_channel or self.secret_token)

    @property
    def display_label(self) -> str:
        return self.label or self.name


class StateDef(BaseModel):
    """Estado de um tipo de work item; terminal = Done/Closed/Resolved e afins."""

    model_config = ConfigDict(frozen=True)

    name: str
    terminal: bool = False
    description: str = ""

    @field_validator("name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("nome de estado vazio")
        return v


class WorkItemTypeDef(BaseModel):
    """Tipo de work item (Task, Bug, Epic...) com seus estados em ordem."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    description: str = ""
    states: tuple[StateDef, ...]
    default_fields: dict[str, Any] = Field(default_factory=dict, alias="defaultFields")

    @field_validator("name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("nome de tipo vazio")
        return v

    @field_validator("default_fields")
    @classmethod
    def check_default_fields(cls, v: dict[str, Any]) -> dict[str, Any]:
        """Campos padrão seguem as mesmas regras do patch: namespace conhecido e números válidos."""
        out: dict[str, Any] = {}
        for name, value in v.items():
            if not is_known_field(name):
                raise ValueError(f"campo padrão com namespace inválido: {name!r}")
            try:
                out[name] = coerce_numeric(name, value)
            except ValidationError as e:
                raise ValueError(str(e)) from None
        return out

    @model_validator(mode="after")
    def check_states(self) -> "WorkItemTypeDef":
        seen: set[str] = set()
        for state in self.states:
            key = state.name.casefold()
            if key in seen:
                raise ValueError(f"estado duplicado: {state.name}")
            seen.add(key)
        if not any(not s.terminal for s in self.states):
            raise ValueError(f"tipo {self.name} sem estado não terminal para criação")
        default_state = self.default_fields.get(STATE_FIELD)
        if default_state is not None:
            if not isinstance(default_state, str) or default_state.strip().casefold() not in seen:
                raise ValueError(f"estado padrão {default_state!r} não declarado no tipo {self.name}")
            if default_state.strip().casefold() in self.terminal_state_names():
                raise ValueError(f"estado padrão {default_state!r} é terminal")
        return self

    def terminal_state_names(self) -> frozenset[str]:
        """Nomes (casefold) dos estados terminais."""
        return frozenset(s.name.casefold() for s in self.states if s.terminal)

    def default_state(self) -> StateDef:
        """Primeiro estado não terminal (padrão de criação)."""
        return next(s for s in self.states if not s.terminal)

    def find_state(self, name: str) -> Optional[StateDef]:
        key = (name or "").strip().casefold()
        return next((s for s in self.states if s.name.casefold() == key), None)


class PriorityDef(BaseModel):
    """Nível de prioridade (1 = mais urgente) e rótulo de exibição."""

    model_config = ConfigDict(frozen=True)

    level: int = Field(ge=1)
    label: str

    @field_validator("label")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("rótulo de prioridade vazio")
        return v


DEFAULT_PRIORITIES: tuple[PriorityDef, ...] = (
    PriorityDef(level=1, label="1 - Critical"),
    PriorityDef(level=2, label="2 - High"),
    PriorityDef(level=3, label="3 - Medium"),
    PriorityDef(level=4, label="4 - Low"),
)
