"""Modelos para integração Azure DevOps (patch, resposta HTTP, resultados)."""
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# Classificações de falha carregadas em AzureResult.error_kind
REMOTE_REJECTED = "RemoteRejected"
DECODE_ERROR = "DecodeError"

IN_PROGRESS_STATES = frozenset({"Active", "Doing", "In Progress"})
COMPLETED_STATES = frozenset({"Closed", "Done", "Resolved"})


@dataclass(frozen=True)
class PatchOperation:
    """Um passo do JSON Patch enviado ao Azure DevOps."""

    op: str
    path: str
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.op, "path": self.path, "value": self.value}


@dataclass(frozen=True)
class TransportResponse:
    """Resposta HTTP crua (status, corpo texto, URL final)."""

    status_code: int
    text: str
    url: str = ""
    content_type: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class AzureResult(BaseModel):
    """Resultado de create/update/delete de um Work Item."""

    model_config = ConfigDict(frozen=True)

    success: bool
    work_item_id: Optional[int] = None
    fields: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    status_code: Optional[int] = None
    error_kind: Optional[str] = None
    work_item_type: Optional[str] = None
    title: Optional[str] = None
    state: Optional[str] = None
    url: Optional[str] = None


class WorkItemSummary(BaseModel):
    """Linha de listagem de um Work Item."""

    work_item_id: int
    title: str = ""
    work_item_type: str = ""
    state: str = ""
    assigned_to: str = ""
    created_date: Optional[str] = None
    priority: Optional[int] = None
    description: str = ""
    url: str = ""


class WorkItemListResult(BaseModel):
    """Resultado de getWorkItems."""

    model_config = ConfigDict(frozen=True)

    success: bool
    work_items: list[WorkItemSummary] = Field(default_factory=list)
    message: str = ""
    status_code: Optional[int] = None
    error_kind: Optional[str] = None

    def stats(self) -> dict[str, int]:
        """Totais: todos, em andamento e concluídos."""
        return {
            "total": len(self.work_items),
            "in_progress": sum(1 for w in self.work_items if w.state in IN_PROGRESS_STATES),
            "completed": sum(1 for w in self.work_items if w.state in COMPLETED_STATES),
        }
