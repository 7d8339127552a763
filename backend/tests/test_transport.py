"""Testes do transporte HTTP (requests mockado)."""
from unittest.mock import MagicMock

import pytest
import requests
from urllib3.util.retry import RequestHistory

from workitem_integration.exceptions import AuthenticationError, TransportError, TransportTimeout
from workitem_integration.models.config_models import ConnectionConfig
from workitem_integration.services.transport import (
    JSON_PATCH_CONTENT_TYPE,
    RETRY_BACKOFF_MAX_SECONDS,
    AzureDevOpsTransport,
    project_url,
    work_item_web_url,
)

URL = "https://dev.azure.com/org/proj/_apis/wit/workitems/1"


def _http(status: int, text: str = "", url: str = URL, content_type: str = "application/json"):
    r = MagicMock()
    r.status_code = status
    r.text = text
    r.url = url
    r.headers = {"Content-Type": content_type}
    return r


def _transport(*responses) -> tuple[AzureDevOpsTransport, MagicMock]:
    session = MagicMock()
    session.request.side_effect = list(responses)
    return AzureDevOpsTransport(timeout=5, session=session), session


def test_send_returns_transport_response():
    transport, session = _transport(_http(200, '{"id": 1}'))
    resp = transport.send(
        "PATCH",
        URL,
        headers={"Authorization": "Basic x"},
        params={"api-version": "7.1"},
        json_body=[{"op": "add", "path": "/fields/System.Title", "value": "T"}],
        content_type=JSON_PATCH_CONTENT_TYPE,
    )
    assert resp.ok
    assert resp.status_code == 200
    assert resp.text == '{"id": 1}'
    kwargs = session.request.call_args.kwargs
    assert kwargs["method"] == "PATCH"
    assert kwargs["timeout"] == 5
    assert kwargs["headers"]["Content-Type"] == JSON_PATCH_CONTENT_TYPE
    assert kwargs["headers"]["Authorization"] == "Basic x"
    assert kwargs["json"][0]["path"] == "/fields/System.Title"


def test_application_errors_are_returned_not_raised():
    transport, _ = _transport(_http(404, '{"message": "TF401232"}'))
    resp = transport.send("GET", URL, headers={})
    assert not resp.ok
    assert resp.status_code == 404


@pytest.mark.parametrize("status", [401, 403, 203])
def test_auth_statuses_raise_authentication_error(status):
    transport, _ = _transport(_http(status, "<html>login</html>", content_type="text/html"))
    with pytest.raises(AuthenticationError):
        transport.send("GET", URL, headers={})


def test_signin_redirect_raises_authentication_error():
    transport, _ = _transport(_http(200, "<html/>", url="https://dev.azure.com/org/_signin?realm=x"))
    with pytest.raises(AuthenticationError):
        transport.send("GET", URL, headers={})


def test_timeout_maps_to_transport_timeout():
    transport, session = _transport(requests.Timeout("lento"))
    with pytest.raises(TransportTimeout):
        transport.send("POST", URL, headers={}, json_body=[])
    assert session.request.call_count == 1


def test_network_error_maps_to_transport_error():
    transport, _ = _transport(requests.ConnectionError("recusado"))
    with pytest.raises(TransportError) as exc:
        transport.send("GET", URL, headers={})
    assert not isinstance(exc.value, TransportTimeout)


def test_retry_policy_only_repeats_reads():
    transport = AzureDevOpsTransport(timeout=5, read_retries=2)
    retry = transport.session.get_adapter("https://dev.azure.com").max_retries
    assert retry.total == 2
    assert retry.read == 0
    assert retry.connect == 0
    assert retry.is_retry("GET", 503)
    assert not retry.is_retry("POST", 503)
    assert not retry.is_retry("PATCH", 503)
    assert not retry.is_retry("DELETE", 503)
    transport.close()


def test_read_retry_wait_is_bounded():
    transport = AzureDevOpsTransport(timeout=5, read_retries=3)
    retry = transport.session.get_adapter("https://dev.azure.com").max_retries
    assert retry.respect_retry_after_header is False
    failures = tuple(RequestHistory("GET", "/x", None, 503, None) for _ in range(10))
    assert retry.new(history=failures).get_backoff_time() <= RETRY_BACKOFF_MAX_SECONDS
    transport.close()


def test_project_url_quotes_and_adds_api_version():
    config = ConnectionConfig(name="c", organization="org", project="Meu Projeto")
    url, params = project_url(config, "wit/workitems/$Task", {"$top": 5})
    assert url == "https://dev.azure.com/org/Meu%20Projeto/_apis/wit/workitems/$Task"
    assert params == {"$top": 5, "api-version": "7.1"}


def test_project_url_respects_connection_overrides():
    config = ConnectionConfig(
        name="c",
        organization="org",
        project="Meu%20Projeto",
        baseUrl="https://devops.interno.local/tfs/",
        apiVersion="6.0",
    )
    url, params = project_url(config, "wit/wiql")
    assert url == "https://devops.interno.local/tfs/org/Meu%20Projeto/_apis/wit/wiql"
    assert params["api-version"] == "6.0"


def test_work_item_web_url():
    config = ConnectionConfig(name="c", organization="org", project="proj")
    assert work_item_web_url(config, 42) == "https://dev.azure.com/org/proj/_workitems/edit/42"
