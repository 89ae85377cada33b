import json
import httpx
import pytest
from dashboard.errors import ApplicationError, TransportError
from dashboard.pipeline.webhook import (
    NOT_STARTED_MESSAGE,
    PipelineWebhookClient,
    WebhookOutcome,
    interpret_response,
)
from dashboard.schemas import TriggerPayload
from tests.factories import TRIGGER_URL, WebhookRecorder

def json_response(body, status_code=200):
    return httpx.Response(status_code, json=body)

@pytest.mark.unit
class TestInterpretResponse:
    def test_success_true_is_synchronous_completion(self):
        assert interpret_response(json_response({"success": True})) is WebhookOutcome.COMPLETED

    @pytest.mark.parametrize("body", [{}, {"jobId": "job-1"}, {"message": "queued"}, ["job-1"]])
    def test_asynchronous_start(self, body):
        assert interpret_response(json_response(body)) is WebhookOutcome.ACCEPTED

    def test_success_false_uses_error_text(self):
        with pytest.raises(ApplicationError) as exc_info:
            interpret_response(json_response({"success": False, "error": "Quota exceeded"}))
        assert exc_info.value.message == "Quota exceeded"

    def test_success_false_falls_back_to_message(self):
        with pytest.raises(ApplicationError) as exc_info:
            interpret_response(json_response({"success": False, "message": "No files"}))
        assert exc_info.value.message == "No files"

    def test_success_false_without_detail(self):
        with pytest.raises(ApplicationError) as exc_info:
            interpret_response(json_response({"success": False}))
        assert exc_info.value.message == "Pipeline reported a failure"

    def test_error_without_success_flag(self):
        with pytest.raises(ApplicationError) as exc_info:
            interpret_response(json_response({"error": "workflow inactive"}))
        assert exc_info.value.message == f"{NOT_STARTED_MESSAGE}: workflow inactive"

    @pytest.mark.parametrize("body", [None, [], ""])
    def test_empty_body_did_not_start(self, body):
        response = httpx.Response(200, content=json.dumps(body), headers={"content-type": "application/json"})
        with pytest.raises(ApplicationError) as exc_info:
            interpret_response(response)
        assert exc_info.value.message == NOT_STARTED_MESSAGE

    def test_http_error_status(self):
        with pytest.raises(TransportError) as exc_info:
            interpret_response(json_response({"success": True}, status_code=500))
        assert exc_info.value.status_code == 500
        assert "HTTP 500" in exc_info.value.message

    def test_non_json_content_type(self):
        response = httpx.Response(200, text="<html>ok</html>", headers={"content-type": "text/html"})
        with pytest.raises(TransportError) as exc_info:
            interpret_response(response)
        assert exc_info.value.message == "Pipeline returned an invalid response format"

    def test_malformed_json(self):
        response = httpx.Response(200, content=b"{not json", headers={"content-type": "application/json"})
        with pytest.raises(TransportError) as exc_info:
            interpret_response(response)
        assert exc_info.value.message == "Pipeline returned an invalid JSON response"

@pytest.mark.unit
class TestPipelineWebhookClient:
    @pytest.fixture
    def payload(self):
        return TriggerPayload(file_ids=["f1", "f2"], workspace_id="ws-1", trigger_by="user-1")

    @pytest.mark.asyncio
    async def test_posts_payload_once(self, payload):
        recorder = WebhookRecorder()
        recorder.respond(200, json={"success": True})
        async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as http_client:
            client = PipelineWebhookClient(TRIGGER_URL, http_client=http_client)
            outcome = await client.trigger(payload)

        assert outcome is WebhookOutcome.COMPLETED
        assert len(recorder.requests) == 1
        request = recorder.requests[0]
        assert request.method == "POST"
        assert str(request.url) == TRIGGER_URL
        assert json.loads(request.content) == {
            "file_ids": ["f1", "f2"],
            "workspace_id": "ws-1",
            "trigger_by": "user-1",
        }

    @pytest.mark.asyncio
    async def test_network_failure_is_not_retried(self, payload):
        calls = []

        def refuse(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as http_client:
            client = PipelineWebhookClient(TRIGGER_URL, http_client=http_client)
            with pytest.raises(TransportError) as exc_info:
                await client.trigger(payload)

        assert len(calls) == 1
        assert "connection refused" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(WebhookRecorder())) as http_client:
            client = PipelineWebhookClient(TRIGGER_URL, http_client=http_client)
            await client.aclose()
            assert not http_client.is_closed

    @pytest.mark.asyncio
    async def test_aclose_closes_owned_client(self):
        client = PipelineWebhookClient(TRIGGER_URL)
        await client.aclose()
        assert client._client.is_closed
