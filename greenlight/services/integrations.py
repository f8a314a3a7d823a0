"""HTTP collaborator clients for packet generation and action execution."""

import hashlib
import json
import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from greenlight.config import settings
from greenlight.errors import PermanentError
from greenlight.models.project import Project

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503, 504)

# Grant each action needs at execution time; None means no grant beyond the approval
ACTION_PERMISSIONS: Dict[str, Optional[str]] = {
    "deploy_landing_page": None,
    "send_welcome_email_sequence": "email_send",
    "send_phase2_lifecycle_email": "email_send",
    "activate_meta_ads_campaign": "ads_enabled",
    "trigger_phase3_repo_workflow": "repo_write",
    "trigger_phase3_deploy": "deploy",
}


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS
    return False


class CollaboratorClient:
    """Base client for collaborator services with bearer auth and retries."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = settings.COLLABORATOR_API_KEY if api_key is None else api_key
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.transport = transport

    def _build_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(_is_retryable),
        reraise=True,
    )
    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST JSON to the collaborator and return the decoded response.

        Args:
            path: Path below base_url
            body: JSON-serializable request body

        Returns:
            Response JSON object

        Raises:
            PermanentError: If the client has no base URL
            httpx.HTTPError: On transport or status errors after retries
        """
        if not self.base_url:
            raise PermanentError(f"{self.__class__.__name__} has no base URL configured")

        request_hash = hashlib.sha256(json.dumps(body, sort_keys=True, default=str).encode()).hexdigest()
        logger.info(f"POST {path}, hash: {request_hash[:16]}")

        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            response = client.post(f"{self.base_url}{path}", headers=self._build_headers(), json=body)

            if response.status_code in RETRYABLE_STATUS:
                logger.warning(f"Retryable error {response.status_code} from {self.base_url}{path}")

            response.raise_for_status()
            return response.json()


class PacketGenerator(CollaboratorClient):
    """Generates phase packets for a project."""

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url if base_url is not None else settings.GENERATOR_BASE_URL, **kwargs)

    def generate(self, project: Project, phase: int, guidance: Optional[str] = None) -> Dict[str, Any]:
        """Request a raw packet for ``phase``; the caller validates it."""
        body = {
            "project": {
                "id": str(project.id),
                "name": project.name,
                "phase": project.phase,
                "runtime_mode": project.runtime_mode,
                "repo_url": project.repo_url,
            },
            "phase": phase,
            "guidance": guidance,
        }
        result = self._post("/packets", body)
        return result.get("packet", result)


class ActionExecutor(CollaboratorClient):
    """Executes approved actions against the external providers."""

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url if base_url is not None else settings.EXECUTOR_BASE_URL, **kwargs)

    def execute(self, action_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Run one action; returns the provider's response."""
        return self._post(f"/actions/{action_type}", payload)
