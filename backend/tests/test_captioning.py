import json
import httpx
import pytest
from app.services.captioning import caption_image

def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))

@pytest.mark.asyncio
async def test_caption_from_model():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"response": ' "Sunset moment" '})

    async with _client(handler) as client:
        assert await caption_image(b"img", client=client) == "Sunset moment"
    assert seen["stream"] is False and seen["images"] == ["aW1n"]

@pytest.mark.asyncio
async def test_model_errors_fall_back_to_default():
    async with _client(lambda r: httpx.Response(500)) as client:
        assert await caption_image(b"img", client=client) == "Event memory"
    async with _client(lambda r: httpx.Response(200, json={"response": ""})) as client:
        assert await caption_image(b"img", client=client) == "Event memory"
    async with _client(lambda r: httpx.Response(200, content=b"not json")) as client:
        assert await caption_image(b"img", client=client) == "Event memory"

@pytest.mark.asyncio
async def test_unreachable_model_falls_back():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as client:
        assert await caption_image(b"img", client=client) == "Event memory"
