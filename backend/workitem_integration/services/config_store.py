"""Leitura da fonte declarativa: conexões, tipos de work item, estados e prioridades."""
import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Callable, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from workitem_integration.config import settings
from workitem_integration.exceptions import ConfigNotFound
from workitem_integration.models.config_models import (
    DEFAULT_PRIORITIES,
    ConnectionConfig,
    PriorityDef,
    StateDef,
    WorkItemTypeDef,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class ConfigStore:
    """
    Resolve conexões nomeadas e metadados por tipo a partir de um JSON declarativo.

    Formato esperado:
        {
          "connections": [{"name", "label", "organization", "project",
                           "credentialChannel", "secretToken" | "secretTokenEnv"}],
          "workItemTypes": [{"name", "description", "defaultFields",
                             "states": [{"name", "terminal", "description"}]}],
          "priorities": [{"level", "label"}]
        }

    Toda leitura relê a fonte (sem cache próprio; o cache fica no CacheLayer).
    Registros inválidos são descartados e registrados em log, nunca propagados.
    """

    def __init__(self, source: Mapping[str, Any] | str | Path | None = None) -> None:
        self.source = source if source is not None else settings.WORKITEM_CONFIG_PATH

    def _load_document(self) -> Mapping[str, Any]:
        """Lê o documento declarativo. Fonte ilegível é tratada como vazia."""
        if isinstance(self.source, Mapping):
            return self.source
        path = Path(self.source)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Fonte de configuração ilegível (%s): %s", path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Fonte de configuração %s não é um objeto JSON; ignorada", path)
            return {}
        return data

    def _records(self, section: str, model: type[M], prepare: Callable[[dict], dict] | None = None) -> list[M]:
        """Valida os registros de uma seção; descarta (com log) os malformados e nomes duplicados."""
        raw = self._load_document().get(section) or []
        if not isinstance(raw, list):
            logger.warning("Seção %s da configuração não é uma lista; ignorada", section)
            return []
        out: list[M] = []
        seen: set[str] = set()
        for idx, item in enumerate(raw):
            if not isinstance(item, dict):
                logger.warning("Registro %s[%s] descartado: não é um objeto", section, idx)
                continue
            try:
                record = model.model_validate(prepare(item) if prepare else item)
            except PydanticValidationError as e:
                logger.warning("Registro %s[%s] descartado: %s", section, idx, e.errors(include_url=False))
                continue
            name = getattr(record, "name", None)
            if name is not None:
                key = name.casefold()
                if key in seen:
                    logger.warning("Registro %s[%s] descartado: nome duplicado %r", section, idx, name)
                    continue
                seen.add(key)
            out.append(record)
        return out

    @staticmethod
    def _resolve_secret(item: dict) -> dict:
        """secretTokenEnv aponta para a variável de ambiente que guarda o token."""
        env_name = item.get("secretTokenEnv")
        if env_name and not item.get("secretToken"):
            item = {**item, "secretToken": os.environ.get(str(env_name), "")}
        return item

    def get_connections(self) -> tuple[ConnectionConfig, ...]:
        """Todas as conexões válidas, na ordem declarada."""
        return tuple(self._records("connections", ConnectionConfig, self._resolve_secret))

    def get_connection(self, name: str) -> ConnectionConfig:
        """Conexão pelo nome exato."""
        for conn in self.get_connections():
            if conn.name == (name or "").strip():
                return conn
        raise ConfigNotFound(f"Conexão '{name}' não encontrada")

    def get_work_item_types(self) -> tuple[WorkItemTypeDef, ...]:
        return tuple(self._records("workItemTypes", WorkItemTypeDef))

    def get_work_item_type(self, name: str) -> WorkItemTypeDef:
        """Tipo pelo nome (comparação case-insensitive, como no Azure DevOps)."""
        key = (name or "").strip().casefold()
        for type_def in self.get_work_item_types():
            if type_def.name.casefold() == key:
                return type_def
        raise ConfigNotFound(f"Tipo de work item '{name}' não encontrado")

    def get_states_for_type(self, name: str) -> tuple[StateDef, ...]:
        return self.get_work_item_type(name).states

    def get_priorities(self) -> tuple[PriorityDef, ...]:
        """
        Prioridades ordenadas por nível. Nunca vazio: volta para 1..4 quando a fonte
        está vazia/ilegível ou quando os níveis não são contíguos a partir de 1.
        """
        priorities = sorted(self._records("priorities", PriorityDef), key=lambda p: p.level)
        if not priorities:
            return DEFAULT_PRIORITIES
        levels = [p.level for p in priorities]
        if levels != list(range(1, len(levels) + 1)):
            logger.warning("Níveis de prioridade não contíguos %s; usando padrão 1..4", levels)
            return DEFAULT_PRIORITIES
        return tuple(priorities)
