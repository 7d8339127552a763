"""Orquestração: configuração (com cache), autenticação, patch e transporte para CRUD de Work Items."""
import logging
from collections.abc import Mapping
from typing import Any, Callable, Optional, TypeVar
from urllib.parse import quote

from pydantic import TypeAdapter

from workitem_integration.exceptions import ConfigNotFound, DecodeError, ValidationError
from workitem_integration.models.config_models import ConnectionConfig, PriorityDef, WorkItemTypeDef
from workitem_integration.models.devops_models import (
    DECODE_ERROR,
    AzureResult,
    TransportResponse,
    WorkItemListResult,
)
from workitem_integration.services.auth import AuthResolver, AuthSession
from workitem_integration.services.cache import (
    CONFIG_TTL_SECONDS,
    CacheLayer,
    InMemoryCacheBackend,
    build_cache_layer,
)
from workitem_integration.services.config_store import ConfigStore
from workitem_integration.services.patch_codec import PatchCodec
from workitem_integration.services.transport import (
    JSON_PATCH_CONTENT_TYPE,
    AzureDevOpsTransport,
    project_url,
    work_item_web_url,
)
from workitem_integration.utils.field_utils import (
    ASSIGNED_TO_FIELD,
    CREATED_DATE_FIELD,
    DESCRIPTION_FIELD,
    PRIORITY_FIELD,
    STATE_FIELD,
    TITLE_FIELD,
    WORK_ITEM_TYPE_FIELD,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RESULTS = 50
# Limite da API para GET wit/workitems?ids=
BATCH_SIZE = 200

LIST_FIELDS = (
    "System.Id",
    TITLE_FIELD,
    WORK_ITEM_TYPE_FIELD,
    STATE_FIELD,
    ASSIGNED_TO_FIELD,
    CREATED_DATE_FIELD,
    PRIORITY_FIELD,
    DESCRIPTION_FIELD,
)

CONNECTIONS_KEY = "config:connections"
TYPES_KEY = "config:work-item-types"
PRIORITIES_KEY = "config:priorities"

_TYPES = TypeAdapter(tuple[WorkItemTypeDef, ...])
_PRIORITIES = TypeAdapter(tuple[PriorityDef, ...])


def _require_positive_int(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{label} deve ser um inteiro positivo: {value!r}")
    return value


def _require_title(fields: Mapping[str, Any], required: bool) -> None:
    if TITLE_FIELD not in fields:
        if required:
            raise ValidationError(f"{TITLE_FIELD} é obrigatório")
        return
    title = fields[TITLE_FIELD]
    if not isinstance(title, str) or not title.strip():
        raise ValidationError(f"{TITLE_FIELD} não pode ser vazio")


class WorkItemService:
    """
    Operações create/update/delete/list de Work Items no Azure DevOps.

    Cada verbo faz uma ida e volta de rede (mais, no máximo, uma para o fallback de
    autenticação). Apenas a configuração é cacheada; dados de work item nunca.
    """

    def __init__(
        self,
        config_store: Optional[ConfigStore] = None,
        cache: Optional[CacheLayer] = None,
        auth_resolver: Optional[AuthResolver] = None,
        transport: Optional[AzureDevOpsTransport] = None,
        codec: Optional[PatchCodec] = None,
        config_ttl_seconds: float = CONFIG_TTL_SECONDS,
    ) -> None:
        self.config_store = config_store or ConfigStore()
        self.cache = cache or build_cache_layer()
        self.auth = auth_resolver or AuthResolver()
        self.transport = transport or AzureDevOpsTransport()
        self.codec = codec or PatchCodec()
        self.config_ttl_seconds = config_ttl_seconds
        # Conexões carregam segredo: ficam só na memória do processo, nunca no cache compartilhado
        self.local_cache = self.cache if not self.cache.is_distributed else CacheLayer(InMemoryCacheBackend())

    # --- configuração (cacheada) ---

    def _cached(self, key: str, supplier: Callable[[], T], adapter: TypeAdapter) -> T:
        return self.cache.get_or_compute(key, self.config_ttl_seconds, supplier, adapter)

    def _connections(self) -> tuple[ConnectionConfig, ...]:
        return self.local_cache.get_or_compute(
            CONNECTIONS_KEY, self.config_ttl_seconds, self.config_store.get_connections
        )

    def _types(self) -> tuple[WorkItemTypeDef, ...]:
        return self._cached(TYPES_KEY, self.config_store.get_work_item_types, _TYPES)

    def _priorities(self) -> tuple[PriorityDef, ...]:
        return self._cached(PRIORITIES_KEY, self.config_store.get_priorities, _PRIORITIES)

    def _connection(self, config_name: str) -> ConnectionConfig:
        name = (config_name or "").strip() if isinstance(config_name, str) else ""
        for conn in self._connections():
            if conn.name == name:
                return conn
        raise ConfigNotFound(f"Conexão '{config_name}' não encontrada")

    def _type(self, work_item_type: str) -> WorkItemTypeDef:
        key = (work_item_type or "").strip().casefold() if isinstance(work_item_type, str) else ""
        for type_def in self._types():
            if type_def.name.casefold() == key:
                return type_def
        raise ConfigNotFound(f"Tipo de work item '{work_item_type}' não encontrado")

    def refresh_configuration(self) -> None:
        """Invalida as entradas de configuração (após alteração da fonte declarativa)."""
        self.local_cache.invalidate(CONNECTIONS_KEY)
        for key in (TYPES_KEY, PRIORITIES_KEY):
            self.cache.invalidate(key)

    # --- metadados para o chamador (listas de {label, value}) ---

    def get_available_configurations(self) -> list[dict[str, Any]]:
        return [
            {
                "label": c.display_label,
                "value": c.name,
                "organization": c.organization,
                "project": c.project,
            }
            for c in self._connections()
        ]

    def get_work_item_types(self) -> list[dict[str, Any]]:
        return [{"label": t.name, "value": t.name, "description": t.description} for t in self._types()]

    def get_available_states_for_type(self, work_item_type: str, exclude_terminal: bool = False) -> list[dict[str, Any]]:
        """Estados do tipo, em ordem. exclude_terminal=True serve a formulários de criação."""
        type_def = self._type(work_item_type)
        return [
            {"label": s.name, "value": s.name, "description": s.description, "terminal": s.terminal}
            for s in type_def.states
            if not (exclude_terminal and s.terminal)
        ]

    def get_priorities(self) -> list[dict[str, Any]]:
        return [{"label": p.label, "value": p.level} for p in self._priorities()]

    # --- verbos ---

    def _send(
        self,
        session: AuthSession,
        method: str,
        url: str,
        params: dict,
        json_body: Any = None,
        content_type: Optional[str] = None,
    ) -> TransportResponse:
        kwargs: dict[str, Any] = {"params": params, "json_body": json_body}
        if content_type:
            kwargs["content_type"] = content_type
        return session.execute(lambda headers: self.transport.send(method, url, headers=headers, **kwargs))

    def _with_web_url(self, result: AzureResult, config: ConnectionConfig, message: str) -> AzureResult:
        if not result.success:
            return result
        update: dict[str, Any] = {"message": message}
        if result.work_item_id is not None and (not result.url or "/_apis/" in result.url):
            update["url"] = work_item_web_url(config, result.work_item_id)
        return result.model_copy(update=update)

    def create_work_item(self, config_name: str, work_item_type: str, fields: Mapping[str, Any]) -> AzureResult:
        """
        Cria um work item. Estados terminais informados em System.State são removidos
        (o Azure DevOps rejeita criação já encerrada); campos padrão do tipo entram depois
        dos campos do chamador, apenas para chaves ausentes.

        Raises:
            ConfigurationError: conexão inexistente ou sem credencial (antes de qualquer rede).
            ValidationError: tipo não declarado, título ausente/vazio ou campo inválido.
            AuthenticationError / TransportError / TransportTimeout: após o fallback de autenticação.
        """
        if not isinstance(fields, Mapping):
            raise ValidationError("fields deve ser um mapeamento campo -> valor")
        config = self._connection(config_name)
        try:
            type_def = self._type(work_item_type)
        except ConfigNotFound as e:
            raise ValidationError(str(e)) from e
        session = self.auth.authenticate(config)
        _require_title(fields, required=True)

        field_set = self.codec.strip_terminal_state(fields, type_def)
        for name, value in type_def.default_fields.items():
            if name not in fields:
                field_set[name] = value
        field_set = self.codec.strip_terminal_state(field_set, type_def)
        operations = self.codec.build_patch(field_set)

        url, params = project_url(config, f"wit/workitems/${quote(type_def.name, safe='')}")
        response = self._send(
            session, "POST", url, params, self.codec.encode(operations), JSON_PATCH_CONTENT_TYPE
        )
        result = self.codec.parse_result(response)
        if result.success:
            logger.info("Work item %s (%s) criado na conexão %s", result.work_item_id, type_def.name, config.name)
        else:
            logger.warning("Criação de %s na conexão %s falhou: %s", type_def.name, config.name, result.message)
        return self._with_web_url(result, config, f"Work item {result.work_item_id} criado com sucesso")

    def update_work_item(self, config_name: str, work_item_id: int, fields: Mapping[str, Any]) -> AzureResult:
        """Atualiza campos de um work item. Mover para estado terminal é permitido."""
        _require_positive_int(work_item_id, "work_item_id")
        if not isinstance(fields, Mapping) or not fields:
            raise ValidationError("Informe ao menos um campo para atualizar")
        config = self._connection(config_name)
        session = self.auth.authenticate(config)
        _require_title(fields, required=False)
        operations = self.codec.build_patch(fields)

        url, params = project_url(config, f"wit/workitems/{work_item_id}")
        response = self._send(
            session, "PATCH", url, params, self.codec.encode(operations), JSON_PATCH_CONTENT_TYPE
        )
        result = self.codec.parse_result(response)
        if not result.success:
            logger.warning("Atualização do work item %s falhou: %s", work_item_id, result.message)
        return self._with_web_url(result, config, f"Work item {work_item_id} atualizado com sucesso")

    def delete_work_item(self, config_name: str, work_item_id: int, reason: Optional[str] = None) -> AzureResult:
        """
        Exclui (envia para a lixeira) um work item.
        A API de exclusão não aceita motivo: o motivo é registrado apenas no log de auditoria.
        """
        _require_positive_int(work_item_id, "work_item_id")
        config = self._connection(config_name)
        session = self.auth.authenticate(config)

        url, params = project_url(config, f"wit/workitems/{work_item_id}")
        response = self._send(session, "DELETE", url, params)
        result = self.codec.parse_result(response, fallback_id=work_item_id)
        if result.success:
            reason_text = (reason or "").strip() if isinstance(reason, str) else ""
            logger.info(
                "Work item %s excluído na conexão %s. Motivo: %s",
                work_item_id, config.name, reason_text or "não informado",
            )
            return result.model_copy(update={"message": f"Work item {work_item_id} excluído com sucesso"})
        logger.warning("Exclusão do work item %s falhou: %s", work_item_id, result.message)
        return result

    def get_work_items(
        self,
        config_name: str,
        type_filter: Optional[str] = None,
        state_filter: Optional[str] = None,
        max_results: Optional[int] = DEFAULT_MAX_RESULTS,
    ) -> WorkItemListResult:
        """
        Consulta WIQL limitada a max_results (padrão 50) e busca os itens encontrados.
        Filtros de tipo e estado são aplicados depois da consulta.
        """
        top = DEFAULT_MAX_RESULTS if max_results is None else _require_positive_int(max_results, "max_results")
        config = self._connection(config_name)
        session = self.auth.authenticate(config)

        wiql = {
            "query": (
                "SELECT [System.Id] FROM WorkItems WHERE [System.TeamProject] = @project "
                "ORDER BY [System.ChangedDate] DESC"
            )
        }
        url, params = project_url(config, "wit/wiql", {"$top": top})
        response = self._send(session, "POST", url, params, wiql)
        if not response.ok:
            return self.codec.parse_work_item_list(response)
        try:
            ids = self.codec.parse_wiql_ids(response)[:top]
        except DecodeError as e:
            return WorkItemListResult(
                success=False,
                message=f"[{DECODE_ERROR}] {e}",
                status_code=response.status_code,
                error_kind=DECODE_ERROR,
            )

        items = []
        for i in range(0, len(ids), BATCH_SIZE):
            batch = ids[i : i + BATCH_SIZE]
            url, params = project_url(
                config, "wit/workitems", {"ids": ",".join(str(x) for x in batch), "fields": ",".join(LIST_FIELDS)}
            )
            page = self.codec.parse_work_item_list(self._send(session, "GET", url, params))
            if not page.success:
                return page
            items.extend(page.work_items)

        items = [
            w if w.url and "/_apis/" not in w.url
            else w.model_copy(update={"url": work_item_web_url(config, w.work_item_id)})
            for w in items
        ]
        if type_filter:
            items = [w for w in items if w.work_item_type == type_filter]
        if state_filter:
            items = [w for w in items if w.state == state_filter]
        return WorkItemListResult(
            success=True,
            work_items=items,
            message=f"{len(items)} work item(s) encontrado(s)",
            status_code=response.status_code,
        )
