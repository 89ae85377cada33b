"""Client for the pipeline trigger webhook."""
import logging
from enum import Enum
from typing import Optional

import httpx

from dashboard.errors import ApplicationError, TransportError
from dashboard.schemas import TriggerPayload

logger = logging.getLogger(__name__)

NOT_STARTED_MESSAGE = "Pipeline returned without starting job"

class WebhookOutcome(str, Enum):
    COMPLETED = "completed"  # the pipeline finished synchronously
    ACCEPTED = "accepted"    # asynchronous start, progress arrives on the change feed

def interpret_response(response: httpx.Response) -> WebhookOutcome:
    """Map a webhook response onto an outcome, raising on every failure shape."""
    if not response.is_success:
        raise TransportError(
            f"Pipeline trigger failed with HTTP {response.status_code}",
            status_code=response.status_code,
        )

    content_type = response.headers.get("content-type", "")
    if "application/json" not in content_type.lower():
        raise TransportError("Pipeline returned an invalid response format", status_code=response.status_code)

    try:
        body = response.json()
    except ValueError as e:
        raise TransportError("Pipeline returned an invalid JSON response", status_code=response.status_code) from e

    if not isinstance(body, dict):
        if not body:
            raise ApplicationError(NOT_STARTED_MESSAGE)
        return WebhookOutcome.ACCEPTED

    success = body.get("success")
    if success is False:
        raise ApplicationError(str(body.get("error") or body.get("message") or "Pipeline reported a failure"))
    if success is True:
        return WebhookOutcome.COMPLETED
    if body.get("error"):
        raise ApplicationError(f"{NOT_STARTED_MESSAGE}: {body['error']}")
    return WebhookOutcome.ACCEPTED

class PipelineWebhookClient:
    """Single-attempt POST to the pipeline trigger URL. Never retries."""

    def __init__(self, url: str, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self.url = url
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def trigger(self, payload: TriggerPayload) -> WebhookOutcome:
        logger.info(f"Triggering pipeline for workspace {payload.workspace_id} with {len(payload.file_ids)} file(s)")
        try:
            response = await self._client.post(self.url, json=payload.model_dump())
        except httpx.HTTPError as e:
            raise TransportError(f"Pipeline request failed: {str(e)}") from e
        outcome = interpret_response(response)
        logger.info(f"Pipeline webhook answered HTTP {response.status_code}: {outcome.value}")
        return outcome

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
