"""Utilitários para nomes de campo do Azure DevOps e montagem do FieldSet."""
import math
from typing import Any, Optional

from workitem_integration.exceptions import ValidationError

TITLE_FIELD = "System.Title"
STATE_FIELD = "System.State"
DESCRIPTION_FIELD = "System.Description"
WORK_ITEM_TYPE_FIELD = "System.WorkItemType"
ASSIGNED_TO_FIELD = "System.AssignedTo"
CREATED_DATE_FIELD = "System.CreatedDate"
PRIORITY_FIELD = "Microsoft.VSTS.Common.Priority"

# Prefixos de namespace conhecidos do schema remoto (case-sensitive)
KNOWN_FIELD_PREFIXES = ("System.", "Microsoft.VSTS.", "Custom.")

# Campos declarados como número no schema remoto
INTEGER_FIELDS = frozenset({
    PRIORITY_FIELD,
    "Microsoft.VSTS.Common.StackRank",
    "Microsoft.VSTS.Common.BusinessValue",
})
DECIMAL_FIELDS = frozenset({
    "Microsoft.VSTS.Scheduling.StoryPoints",
    "Microsoft.VSTS.Scheduling.Effort",
    "Microsoft.VSTS.Scheduling.OriginalEstimate",
    "Microsoft.VSTS.Scheduling.RemainingWork",
    "Microsoft.VSTS.Scheduling.CompletedWork",
})
NUMERIC_FIELDS = INTEGER_FIELDS | DECIMAL_FIELDS


def is_known_field(name: str) -> bool:
    """
    Verifica se o nome é qualificado por um namespace conhecido.
    Ex.: "System.Title" -> True; "title" -> False; "Custom." -> False.
    """
    if not isinstance(name, str):
        return False
    return any(name.startswith(p) and len(name) > len(p) for p in KNOWN_FIELD_PREFIXES)


def coerce_numeric(name: str, value: Any) -> Any:
    """
    Converte o valor de um campo numérico para int/float (o schema remoto rejeita strings).
    Campos não numéricos e None são devolvidos sem alteração.

    Raises:
        ValidationError: valor não numérico, não finito, ou não inteiro em campo inteiro.
    """
    if name not in NUMERIC_FIELDS or value is None:
        return value
    if isinstance(value, bool):
        raise ValidationError(f"Valor inválido para {name}: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        number, s = value, ""
    else:
        s = str(value).strip()
        try:
            number = float(s)
        except ValueError:
            raise ValidationError(f"Valor não numérico para {name}: {value!r}") from None
    if not math.isfinite(number):
        raise ValidationError(f"Valor numérico inválido para {name}: {value!r}")
    if name in INTEGER_FIELDS:
        if not number.is_integer():
            raise ValidationError(f"Valor inteiro esperado para {name}: {value!r}")
        return int(number)
    if isinstance(value, float):
        return value
    return int(number) if number.is_integer() and "." not in s else number


def build_field_set(
    title: Optional[str] = None,
    description: Optional[str] = None,
    state: Optional[str] = None,
    priority: Optional[int | str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """
    Monta o FieldSet a partir dos parâmetros simples (título, descrição, estado, prioridade).
    Parâmetros None são omitidos; `extra` é acrescentado depois, na ordem recebida.
    """
    fields: dict[str, Any] = {}
    if title is not None:
        fields[TITLE_FIELD] = title
    if description is not None:
        fields[DESCRIPTION_FIELD] = description
    if state is not None:
        fields[STATE_FIELD] = state
    if priority is not None:
        fields[PRIORITY_FIELD] = priority
    for name, value in (extra or {}).items():
        fields[name] = value
    return fields
