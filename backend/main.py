"""FastAPI app: CRUD de Work Items do Azure DevOps, metadados e health."""
import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, status
from pydantic import BaseModel, Field

from workitem_integration.config import settings
from workitem_integration.exceptions import (
    AuthenticationError,
    ConfigNotFound,
    ConfigurationError,
    TransportError,
    TransportTimeout,
    ValidationError,
    WorkItemIntegrationError,
)
from workitem_integration.services.workitem_service import DEFAULT_MAX_RESULTS, WorkItemService
from workitem_integration.utils.field_utils import build_field_set

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_service() -> WorkItemService:
    return WorkItemService()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if get_service.cache_info().currsize:
        get_service().transport.close()


app = FastAPI(title="WorkItemIntegration", description="Integração de Work Items com Azure DevOps", lifespan=lifespan)


class UpdateWorkItemRequest(BaseModel):
    """Campos simples (título, descrição, estado, prioridade) e/ou `fields` com nomes de referência."""

    title: Optional[str] = None
    description: Optional[str] = None
    state: Optional[str] = None
    priority: Optional[int | str] = None
    fields: dict[str, Any] = Field(default_factory=dict)

    def field_set(self) -> dict[str, Any]:
        return build_field_set(self.title, self.description, self.state, self.priority, self.fields)


class CreateWorkItemRequest(UpdateWorkItemRequest):
    work_item_type: str


def has_edit_permission(x_edit_token: Optional[str]) -> bool:
    """Sem EDIT_TOKEN configurado, edição liberada; senão o header precisa coincidir."""
    return not settings.EDIT_TOKEN or x_edit_token == settings.EDIT_TOKEN


def _require_edit(x_edit_token: Optional[str]) -> None:
    if not has_edit_permission(x_edit_token):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Sem permissão para editar work items")


def _http_error(e: WorkItemIntegrationError) -> HTTPException:
    """Mapeia a taxonomia de erros para status HTTP."""
    if isinstance(e, ValidationError):
        code = 422
    elif isinstance(e, ConfigNotFound):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, ConfigurationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(e, AuthenticationError):
        code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(e, TransportTimeout):
        code = status.HTTP_504_GATEWAY_TIMEOUT
    elif isinstance(e, TransportError):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    if code >= 500:
        logger.error("Falha na integração com Azure DevOps: %s", e)
    return HTTPException(status_code=code, detail=str(e))


@app.get("/health")
async def health():
    """Health check para monitoramento e deploy."""
    return {"status": "ok"}


@app.get("/permissions/edit")
def edit_permission(x_edit_token: str | None = Header(None, alias="X-Edit-Token")):
    return {"has_edit_permission": has_edit_permission(x_edit_token)}


@app.get("/configurations")
def list_configurations(svc: WorkItemService = Depends(get_service)):
    return svc.get_available_configurations()


@app.get("/work-item-types")
def list_work_item_types(svc: WorkItemService = Depends(get_service)):
    return svc.get_work_item_types()


@app.get("/work-item-types/{work_item_type}/states")
def list_states(
    work_item_type: str,
    exclude_terminal: bool = False,
    svc: WorkItemService = Depends(get_service),
):
    try:
        return svc.get_available_states_for_type(work_item_type, exclude_terminal=exclude_terminal)
    except WorkItemIntegrationError as e:
        raise _http_error(e)


@app.get("/priorities")
def list_priorities(svc: WorkItemService = Depends(get_service)):
    return svc.get_priorities()


@app.get("/configurations/{config_name}/work-items")
def list_work_items(
    config_name: str,
    work_item_type: str | None = Query(None, alias="type"),
    state: str | None = None,
    max_results: int = DEFAULT_MAX_RESULTS,
    svc: WorkItemService = Depends(get_service),
):
    try:
        result = svc.get_work_items(config_name, work_item_type, state, max_results)
    except WorkItemIntegrationError as e:
        raise _http_error(e)
    return {**result.model_dump(), "stats": result.stats()}


@app.post("/configurations/{config_name}/work-items")
def create_work_item(
    config_name: str,
    body: CreateWorkItemRequest,
    x_edit_token: str | None = Header(None, alias="X-Edit-Token"),
    svc: WorkItemService = Depends(get_service),
):
    _require_edit(x_edit_token)
    try:
        return svc.create_work_item(config_name, body.work_item_type, body.field_set()).model_dump()
    except WorkItemIntegrationError as e:
        raise _http_error(e)


@app.patch("/configurations/{config_name}/work-items/{work_item_id:int}")
def update_work_item(
    config_name: str,
    work_item_id: int,
    body: UpdateWorkItemRequest,
    x_edit_token: str | None = Header(None, alias="X-Edit-Token"),
    svc: WorkItemService = Depends(get_service),
):
    _require_edit(x_edit_token)
    try:
        return svc.update_work_item(config_name, work_item_id, body.field_set()).model_dump()
    except WorkItemIntegrationError as e:
        raise _http_error(e)


@app.delete("/configurations/{config_name}/work-items/{work_item_id:int}")
def delete_work_item(
    config_name: str,
    work_item_id: int,
    reason: str | None = None,
    x_edit_token: str | None = Header(None, alias="X-Edit-Token"),
    svc: WorkItemService = Depends(get_service),
):
    _require_edit(x_edit_token)
    try:
        return svc.delete_work_item(config_name, work_item_id, reason).model_dump()
    except WorkItemIntegrationError as e:
        raise _http_error(e)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
