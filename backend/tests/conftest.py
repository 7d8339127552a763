"""Configuração pytest e fixtures."""
import json
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

# Garante que backend está no path
_backend = Path(__file__).resolve().parent.parent
if str(_backend) not in sys.path:
    sys.path.insert(0, str(_backend))

from workitem_integration.exceptions import AuthenticationError  # noqa: E402
from workitem_integration.models.devops_models import TransportResponse  # noqa: E402
from workitem_integration.services.auth import (  # noqa: E402
    AuthResolver,
    ManagedCredentialStrategy,
    SharedSecretStrategy,
)
from workitem_integration.services.cache import CacheLayer, InMemoryCacheBackend  # noqa: E402
from workitem_integration.services.config_store import ConfigStore  # noqa: E402
from workitem_integration.services.workitem_service import WorkItemService  # noqa: E402


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: testes que exigem .env (Azure DevOps)")


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.integration)


SAMPLE_DOCUMENT = {
    "connections": [
        {"name": "pat-only", "label": "PAT", "organization": "org", "project": "Meu Projeto", "secretToken": "s3cret"},
        {"name": "managed", "organization": "org", "project": "proj", "credentialChannel": "azure-devops"},
        {
            "name": "dual",
            "organization": "org",
            "project": "proj",
            "credentialChannel": "azure-devops",
            "secretToken": "s3cret",
        },
        {"name": "nocreds", "organization": "org", "project": "proj"},
    ],
    "workItemTypes": [
        {
            "name": "Task",
            "description": "Tarefa",
            "states": [
                {"name": "To Do"},
                {"name": "Doing"},
                {"name": "Done", "terminal": True},
            ],
        },
        {
            "name": "Bug",
            "description": "Defeito",
            "states": [
                {"name": "New"},
                {"name": "Active"},
                {"name": "Resolved", "terminal": True},
                {"name": "Closed", "terminal": True},
            ],
            "defaultFields": {"Microsoft.VSTS.Common.Priority": 2},
        },
    ],
    "priorities": [
        {"level": 1, "label": "Urgente"},
        {"level": 2, "label": "Alta"},
        {"level": 3, "label": "Média"},
    ],
}


def make_response(status_code: int, payload=None, text: str | None = None) -> TransportResponse:
    body = text if text is not None else ("" if payload is None else json.dumps(payload))
    return TransportResponse(status_code=status_code, text=body, url="https://dev.azure.com/org/proj/_apis/x")


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Transporte que registra as chamadas e devolve respostas (ou levanta exceções) em fila."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls: list[SimpleNamespace] = []

    def send(self, method, url, *, headers, params=None, json_body=None, content_type="application/json"):
        self.calls.append(SimpleNamespace(
            method=method,
            url=url,
            headers=dict(headers),
            params=dict(params or {}),
            json_body=json_body,
            content_type=content_type,
        ))
        if not self.responses:
            raise AssertionError(f"Chamada inesperada: {method} {url}")
        r = self.responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r

    def close(self) -> None:
        pass


class FakeCredentialProvider:
    def __init__(self, token: str = "managed-token", error: Exception | None = None) -> None:
        self.token = token
        self.error = error
        self.calls = 0

    def get_access_token(self, channel: str) -> str:
        self.calls += 1
        if self.error:
            raise self.error
        return self.token


@pytest.fixture
def sample_document():
    return json.loads(json.dumps(SAMPLE_DOCUMENT))


@pytest.fixture
def respond():
    return make_response


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeCredentialProvider()


@pytest.fixture
def broken_provider():
    """Canal gerenciado indisponível."""
    return FakeCredentialProvider(error=AuthenticationError("canal indisponível"))


@pytest.fixture
def make_service(sample_document, provider):
    """Fábrica de WorkItemService com fonte em memória, cache em memória e transporte falso."""

    def _make(*responses, document=None, store=None, credential_provider=None, cache=None):
        transport = FakeTransport(*responses)
        svc = WorkItemService(
            config_store=store or ConfigStore(document if document is not None else sample_document),
            cache=cache or CacheLayer(InMemoryCacheBackend()),
            auth_resolver=AuthResolver([
                ManagedCredentialStrategy(credential_provider or provider),
                SharedSecretStrategy(),
            ]),
            transport=transport,
        )
        return svc, transport

    return _make
