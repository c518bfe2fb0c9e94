"""Hosted NLP inference capability (Hugging Face Inference API style).

Posts JSON payloads to ``{base_url}/{model}`` and translates HTTP-level
failures into the pipeline's exception hierarchy, including the
"model is currently loading" answer hosted models give while they warm
up.
"""

from typing import Any

import httpx

from docintel.exceptions import (
    CapabilityNotConfiguredError,
    MalformedResponseError,
    ModelWarmingUpError,
    ServiceError,
    ServiceTimeoutError,
    ServiceUnavailableError,
)
from docintel.utils.config import InferenceConfig
from docintel.utils.logger import get_logger

logger = get_logger(__name__)


class InferenceClient:
    """Async client for a model-per-URL inference service.

    Args:
        config: Inference service configuration.
        api_token: Explicit token; defaults to the configured environment variable.
        client: Pre-built ``httpx.AsyncClient`` (used by tests).
    """

    def __init__(
        self,
        config: InferenceConfig,
        api_token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._api_token = api_token or config.api_token
        self._client = client

    @property
    def is_configured(self) -> bool:
        return self.config.enabled and bool(self._api_token)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def post(self, model: str, payload: dict[str, Any]) -> Any:
        """Run ``model`` on ``payload`` and return the decoded JSON body.

        Raises:
            ModelWarmingUpError: The model is still loading.
            ServiceTimeoutError: The request timed out.
            ServiceUnavailableError: Connection failure or 5xx status.
            ServiceError: Any other non-2xx status.
            MalformedResponseError: The body is not JSON.
        """
        if not self.is_configured:
            raise CapabilityNotConfiguredError("Inference service has no API token")

        url = f"{self.config.base_url.rstrip('/')}/{model}"
        headers = {"Authorization": f"Bearer {self._api_token}"}
        try:
            response = await self._get_client().post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise ServiceTimeoutError(f"Inference request to {model} timed out") from exc
        except httpx.HTTPError as exc:
            raise ServiceUnavailableError(f"Inference service unreachable: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            if response.is_success:
                raise MalformedResponseError(f"{model} returned a non-JSON body") from exc
            body = None

        if isinstance(body, dict) and "error" in body:
            error = str(body["error"])
            if "loading" in error.lower():
                raise ModelWarmingUpError(
                    f"{model} is loading", estimated_time=body.get("estimated_time")
                )
            if response.is_success:
                raise MalformedResponseError(f"{model} returned an error: {error}")

        if response.status_code >= 500:
            raise ServiceUnavailableError(
                f"Inference service error {response.status_code} for {model}"
            )
        if not response.is_success:
            raise ServiceError(f"Inference request rejected: HTTP {response.status_code}")

        logger.debug("Inference call to %s succeeded", model)
        return body
