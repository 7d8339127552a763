"""Transporte HTTP para a API REST do Azure DevOps: uma requisição, uma resposta, sem regra de negócio."""
import logging
from typing import Any, Optional
from urllib.parse import quote, unquote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from workitem_integration.config import settings
from workitem_integration.exceptions import AuthenticationError, TransportError, TransportTimeout
from workitem_integration.models.config_models import ConnectionConfig
from workitem_integration.models.devops_models import TransportResponse

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"

# Espera máxima entre tentativas de GET (s); Retry-After do servidor é ignorado
RETRY_BACKOFF_MAX_SECONDS = 4
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


def project_url(config: ConnectionConfig, endpoint: str, params: Optional[dict] = None) -> tuple[str, dict]:
    """URL {base}/{org}/{projeto}/_apis/{endpoint} e parâmetros com api-version."""
    base = (config.base_url or settings.AZURE_DEVOPS_BASE_URL).rstrip("/")
    proj = unquote(config.project) if "%" in config.project else config.project
    proj_enc = quote(proj, safe="", encoding="utf-8")
    org_enc = quote(config.organization, safe="", encoding="utf-8")
    url = f"{base}/{org_enc}/{proj_enc}/_apis/{endpoint}"
    p = dict(params or {})
    p.setdefault("api-version", config.api_version or settings.AZURE_DEVOPS_API_VERSION)
    return url, p


def work_item_web_url(config: ConnectionConfig, work_item_id: int) -> str:
    """URL do work item na interface web do Azure DevOps."""
    base = (config.base_url or settings.AZURE_DEVOPS_BASE_URL).rstrip("/")
    proj = unquote(config.project) if "%" in config.project else config.project
    proj_enc = quote(proj, safe="", encoding="utf-8")
    return f"{base}/{quote(config.organization, safe='')}/{proj_enc}/_workitems/edit/{work_item_id}"


class AzureDevOpsTransport:
    """
    Executa uma requisição HTTP com timeout rígido por tentativa.
    Retentativas só para GET (429/5xx); escritas e timeouts nunca são repetidos.
    Pior caso de um GET: (read_retries + 1) x timeout + read_retries x RETRY_BACKOFF_MAX_SECONDS.
    Escritas fazem exatamente uma tentativa, limitada a timeout.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        read_retries: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        retries = read_retries if read_retries is not None else settings.HTTP_READ_RETRIES
        if session is None:
            session = requests.Session()
            retry = Retry(
                total=retries,
                connect=0,
                read=0,
                status=retries,
                backoff_factor=1,
                backoff_max=RETRY_BACKOFF_MAX_SECONDS,
                respect_retry_after_header=False,
                status_forcelist=list(RETRY_STATUS_CODES),
                allowed_methods=frozenset({"GET"}),
                raise_on_status=False,
            )
            adapter = HTTPAdapter(pool_connections=10, pool_maxsize=20, max_retries=retry)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

    def send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        params: Optional[dict] = None,
        json_body: Any = None,
        content_type: str = JSON_CONTENT_TYPE,
    ) -> TransportResponse:
        """
        Raises:
            AuthenticationError: 401/403, 203 (página de login) ou redirecionamento para /_signin.
            TransportTimeout: timeout da chamada.
            TransportError: demais falhas de rede.
        """
        req_headers = {"Accept": JSON_CONTENT_TYPE, "Content-Type": content_type, **headers}
        try:
            r = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_body,
                headers=req_headers,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise TransportTimeout(f"Timeout ({self.timeout}s) em {method} {url}") from e
        except requests.RequestException as e:
            raise TransportError(f"Falha de rede em {method} {url}: {e}") from e
        final_url = r.url or ""
        if r.status_code in (401, 403) or r.status_code == 203 or "/_signin" in final_url:
            raise AuthenticationError(f"Erro de autenticação (status {r.status_code})")
        logger.debug("%s %s -> %s", method, url, r.status_code)
        return TransportResponse(
            status_code=r.status_code,
            text=r.text or "",
            url=final_url,
            content_type=r.headers.get("Content-Type") or "",
        )

    def close(self) -> None:
        self.session.close()
