"""Modelos de domínio e DTOs."""
from workitem_integration.models.config_models import (
    DEFAULT_PRIORITIES,
    ConnectionConfig,
    PriorityDef,
    StateDef,
    WorkItemTypeDef,
)
from workitem_integration.models.devops_models import (
    AzureResult,
    PatchOperation,
    TransportResponse,
    WorkItemListResult,
    WorkItemSummary,
)

__all__ = [
    "DEFAULT_PRIORITIES",
    "ConnectionConfig",
    "PriorityDef",
    "StateDef",
    "WorkItemTypeDef",
    "AzureResult",
    "PatchOperation",
    "TransportResponse",
    "WorkItemListResult",
    "WorkItemSummary",
]
