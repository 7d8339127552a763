"""Testes de field_utils."""
import pytest

from workitem_integration.exceptions import ValidationError
from workitem_integration.utils.field_utils import (
    PRIORITY_FIELD,
    build_field_set,
    coerce_numeric,
    is_known_field,
)


@pytest.mark.parametrize("name,expected", [
    ("System.Title", True),
    ("Microsoft.VSTS.Common.Priority", True),
    ("Custom.Cliente", True),
    ("title", False),
    ("system.title", False),
    ("System.", False),
    ("", False),
    (None, False),
])
def test_is_known_field(name, expected):
    assert is_known_field(name) is expected


def test_coerce_numeric_priority():
    assert coerce_numeric(PRIORITY_FIELD, "3") == 3
    assert coerce_numeric(PRIORITY_FIELD, " 2 ") == 2
    assert coerce_numeric(PRIORITY_FIELD, 1.0) == 1
    assert isinstance(coerce_numeric(PRIORITY_FIELD, 2.0), int)
    assert coerce_numeric(PRIORITY_FIELD, None) is None


def test_coerce_numeric_decimal():
    assert coerce_numeric("Microsoft.VSTS.Scheduling.StoryPoints", "5") == 5
    assert coerce_numeric("Microsoft.VSTS.Scheduling.RemainingWork", "2.5") == 2.5


@pytest.mark.parametrize("value", ["alta", True, "2.5", 2.5, float("nan"), float("inf"), "nan"])
def test_coerce_numeric_rejects_invalid_priority(value):
    with pytest.raises(ValidationError):
        coerce_numeric(PRIORITY_FIELD, value)


@pytest.mark.parametrize("value", [float("inf"), "-inf", float("nan")])
def test_coerce_numeric_rejects_non_finite_decimal(value):
    with pytest.raises(ValidationError):
        coerce_numeric("Microsoft.VSTS.Scheduling.Effort", value)


def test_coerce_numeric_ignores_text_fields():
    assert coerce_numeric("System.Title", "42") == "42"


def test_build_field_set_order_and_omissions():
    fields = build_field_set(
        title="Fix login bug",
        priority=2,
        extra={"Custom.Cliente": "ACME", "System.Tags": "login"},
    )
    assert list(fields) == ["System.Title", PRIORITY_FIELD, "Custom.Cliente", "System.Tags"]
    assert "System.Description" not in fields
    assert "System.State" not in fields
