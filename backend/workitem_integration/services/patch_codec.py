"""Tradução FieldSet <-> JSON Patch do Azure DevOps e leitura das respostas."""
import json
import logging
from collections.abc import Mapping
from typing import Any, Optional

from workitem_integration.exceptions import DecodeError, ValidationError
from workitem_integration.models.config_models import WorkItemTypeDef
from workitem_integration.models.devops_models import (
    DECODE_ERROR,
    REMOTE_REJECTED,
    AzureResult,
    PatchOperation,
    TransportResponse,
    WorkItemListResult,
    WorkItemSummary,
)
from workitem_integration.utils.field_utils import (
    ASSIGNED_TO_FIELD,
    CREATED_DATE_FIELD,
    DESCRIPTION_FIELD,
    PRIORITY_FIELD,
    STATE_FIELD,
    TITLE_FIELD,
    WORK_ITEM_TYPE_FIELD,
    coerce_numeric,
    is_known_field,
)

logger = logging.getLogger(__name__)


def _decode_json(text: str) -> Any:
    """json.loads que devolve None para corpo vazio."""
    if not text or not text.strip():
        return None
    return json.loads(text)


def _remote_message(payload: Any) -> Optional[str]:
    """Mensagem do payload de erro do Azure DevOps ({"message": ..., "typeKey": ...})."""
    if not isinstance(payload, Mapping):
        return None
    msg = payload.get("message")
    if not msg and isinstance(payload.get("value"), Mapping):
        msg = payload["value"].get("Message")
    return str(msg) if msg else None


def _html_link(payload: Mapping[str, Any]) -> Optional[str]:
    """_links.html.href quando presente."""
    links = payload.get("_links")
    html = links.get("html") if isinstance(links, Mapping) else None
    href = html.get("href") if isinstance(html, Mapping) else None
    return str(href) if href else None


def _display_name(value: Any) -> str:
    """System.AssignedTo vem como identidade ({"displayName": ...}) ou string."""
    if isinstance(value, Mapping):
        return str(value.get("displayName") or value.get("uniqueName") or "")
    return str(value or "")


def _str_or_none(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None and not isinstance(value, bool) else None
    except (TypeError, ValueError):
        return None


class PatchCodec:
    """Monta o patch ordenado de escrita e converte respostas em AzureResult."""

    def build_patch(self, fields: Mapping[str, Any], op: str = "add") -> list[PatchOperation]:
        """
        Uma operação por chave, na ordem de inserção do FieldSet; path = /fields/<chave>.
        Chaves fora dos namespaces conhecidos são rejeitadas; campos numéricos viram número.
        """
        ops: dict[str, PatchOperation] = {}
        for name, value in fields.items():
            if not is_known_field(name):
                raise ValidationError(f"Campo desconhecido (namespace inválido): {name!r}")
            path = f"/fields/{name}"
            ops[path] = PatchOperation(op=op, path=path, value=coerce_numeric(name, value))
        return list(ops.values())

    @staticmethod
    def strip_terminal_state(fields: Mapping[str, Any], type_def: WorkItemTypeDef) -> dict[str, Any]:
        """Remove System.State quando o valor é um estado terminal do tipo (comparação case-insensitive)."""
        out = dict(fields)
        state = out.get(STATE_FIELD)
        if isinstance(state, str) and state.strip().casefold() in type_def.terminal_state_names():
            logger.info("Estado terminal '%s' removido da criação de %s", state, type_def.name)
            del out[STATE_FIELD]
        return out

    @staticmethod
    def encode(operations: list[PatchOperation]) -> list[dict[str, Any]]:
        return [o.to_dict() for o in operations]

    def parse_result(self, response: TransportResponse, fallback_id: Optional[int] = None) -> AzureResult:
        """
        2xx com JSON contendo id -> sucesso. Não-2xx -> falha RemoteRejected com a mensagem remota
        (ou genérica pelo status). Corpo de sucesso ilegível -> falha DecodeError. Nunca lança exceção.
        """
        try:
            payload = _decode_json(response.text)
        except ValueError as e:
            if response.ok:
                return AzureResult(
                    success=False,
                    message=f"[{DECODE_ERROR}] Resposta ilegível do Azure DevOps: {e}",
                    status_code=response.status_code,
                    error_kind=DECODE_ERROR,
                )
            payload = None

        if not response.ok:
            message = _remote_message(payload) or f"Azure DevOps retornou status {response.status_code}"
            return AzureResult(
                success=False,
                message=f"[{REMOTE_REJECTED}] {message}",
                status_code=response.status_code,
                error_kind=REMOTE_REJECTED,
            )

        if payload is None and fallback_id is not None:
            return AzureResult(success=True, work_item_id=fallback_id, status_code=response.status_code)
        work_item_id = _int_or_none(payload.get("id")) if isinstance(payload, Mapping) else None
        if work_item_id is None:
            return AzureResult(
                success=False,
                message=f"[{DECODE_ERROR}] Resposta sem identificador do work item",
                status_code=response.status_code,
                error_kind=DECODE_ERROR,
            )
        fields = payload.get("fields") if isinstance(payload.get("fields"), Mapping) else {}
        html_link = _html_link(payload)
        return AzureResult(
            success=True,
            work_item_id=work_item_id,
            fields=dict(fields),
            status_code=response.status_code,
            work_item_type=_str_or_none(fields.get(WORK_ITEM_TYPE_FIELD)),
            title=_str_or_none(fields.get(TITLE_FIELD)),
            state=_str_or_none(fields.get(STATE_FIELD)),
            url=html_link or _str_or_none(payload.get("url")),
        )

    @staticmethod
    def parse_wiql_ids(response: TransportResponse) -> list[int]:
        """
        IDs de uma resposta WIQL ({"workItems": [{"id": ...}]}); ignora entradas sem id numérico.

        Raises:
            DecodeError: corpo não é JSON ou não traz a lista workItems.
        """
        try:
            payload = _decode_json(response.text)
        except ValueError as e:
            raise DecodeError(f"Resposta WIQL ilegível: {e}") from e
        if not isinstance(payload, Mapping) or not isinstance(payload.get("workItems"), list):
            raise DecodeError("Resposta WIQL sem lista workItems")
        items = payload["workItems"]
        ids = [_int_or_none(wi.get("id")) for wi in items if isinstance(wi, Mapping)]
        return [i for i in ids if i is not None]

    def parse_work_item_list(self, response: TransportResponse) -> WorkItemListResult:
        """Converte a resposta de GET wit/workitems?ids=... em WorkItemListResult. Nunca lança exceção."""
        try:
            payload = _decode_json(response.text)
        except ValueError as e:
            if response.ok:
                return WorkItemListResult(
                    success=False,
                    message=f"[{DECODE_ERROR}] Resposta ilegível do Azure DevOps: {e}",
                    status_code=response.status_code,
                    error_kind=DECODE_ERROR,
                )
            payload = None
        if not response.ok:
            message = _remote_message(payload) or f"Azure DevOps retornou status {response.status_code}"
            return WorkItemListResult(
                success=False,
                message=f"[{REMOTE_REJECTED}] {message}",
                status_code=response.status_code,
                error_kind=REMOTE_REJECTED,
            )
        if not isinstance(payload, Mapping) or not isinstance(payload.get("value"), list):
            return WorkItemListResult(
                success=False,
                message=f"[{DECODE_ERROR}] Resposta sem lista de work items",
                status_code=response.status_code,
                error_kind=DECODE_ERROR,
            )
        items = [s for s in (self.summarize(item) for item in payload["value"]) if s is not None]
        return WorkItemListResult(success=True, work_items=items, status_code=response.status_code)

    @staticmethod
    def summarize(item: Any) -> Optional[WorkItemSummary]:
        """Linha de listagem a partir de um work item cru; None quando não há id."""
        if not isinstance(item, Mapping):
            return None
        work_item_id = _int_or_none(item.get("id"))
        if work_item_id is None:
            return None
        fields = item.get("fields") if isinstance(item.get("fields"), Mapping) else {}
        html_link = _html_link(item)
        created = fields.get(CREATED_DATE_FIELD)
        return WorkItemSummary(
            work_item_id=work_item_id,
            title=str(fields.get(TITLE_FIELD) or ""),
            work_item_type=str(fields.get(WORK_ITEM_TYPE_FIELD) or ""),
            state=str(fields.get(STATE_FIELD) or ""),
            assigned_to=_display_name(fields.get(ASSIGNED_TO_FIELD)),
            created_date=str(created) if created is not None else None,
            priority=_int_or_none(fields.get(PRIORITY_FIELD)),
            description=str(fields.get(DESCRIPTION_FIELD) or ""),
            url=html_link or str(item.get("url") or ""),
        )
