import json
import os
from typing import Any, Dict, Optional

from google import genai
from google.oauth2 import service_account

from .gemini import GeminiProvider
from ..observability import get_logger

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"

logger = get_logger(provider="google-vertex")


def load_service_account_credentials(
    key_file: Optional[str] = None,
) -> Optional[service_account.Credentials]:
    """
    Resolve Vertex AI service-account credentials.

    Order:
    1. GOOGLE_APPLICATION_CREDENTIALS holding the service-account JSON itself
       (serverless deployments), or a key file path if it is not valid JSON.
    2. The explicit `key_file` argument.
    3. None, letting google-auth fall back to application default credentials.
    """
    raw = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    if raw:
        try:
            info: Dict[str, Any] = json.loads(raw)
        except json.JSONDecodeError:
            logger.info("vertex_auth", method="key_file", source="GOOGLE_APPLICATION_CREDENTIALS")
            return service_account.Credentials.from_service_account_file(raw, scopes=[CLOUD_PLATFORM_SCOPE])
        logger.info("vertex_auth", method="json_credentials")
        return service_account.Credentials.from_service_account_info(info, scopes=[CLOUD_PLATFORM_SCOPE])

    if key_file:
        logger.info("vertex_auth", method="key_file", source="explicit")
        return service_account.Credentials.from_service_account_file(key_file, scopes=[CLOUD_PLATFORM_SCOPE])

    logger.info("vertex_auth", method="application_default")
    return None


class GeminiVertexProvider(GeminiProvider):
    """
    Gemini served through Vertex AI.

    Same streaming and grounding-fallback behavior as `GeminiProvider`;
    differs only in authentication (service account, project and location).
    """

    name = "google-vertex"
    display_name = "Vertex AI"
    cost_per_token = {"input": 0.10, "output": 0.40}

    def __init__(
        self,
        project: str,
        location: str = "us-central1",
        key_file: Optional[str] = None,
        timeout: Optional[float] = None,
        credentials: Optional[Any] = None,
    ):
        self.project = project
        self.location = location
        self.key_file = key_file
        self.credentials = credentials
        super().__init__(api_key=None, timeout=timeout)

    def _build_client(self) -> genai.Client:
        credentials = self.credentials or load_service_account_credentials(self.key_file)
        logger.info("vertex_client_initialized", project=self.project, location=self.location)
        return genai.Client(
            vertexai=True,
            project=self.project,
            location=self.location,
            credentials=credentials,
            http_options=self._http_options(),
        )
