"""Mock adapter -- canned response for demos and offline use."""

from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator

from studiogen.clients.llm_client import ProviderAdapter
from studiogen.models import GenerationRequest, ProviderId

MOCK_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Mock Project</title>
    <script src="https://cdn.tailwindcss.com"></script>
</head>
<body class="bg-gray-900 text-white flex items-center justify-center h-screen">
    <div class="text-center">
        <h1 class="text-4xl font-bold">Mock Project</h1>
        <p class="mt-2">This is a sample response from a mock AI service.</p>
    </div>
</body>
</html>"""


def mock_response(model_id: str) -> str:
    payload = {
        "message": (
            f"This is a mock response from the {model_id} service. "
            "Full integration is not available in this demo."
        ),
        "files": [{"name": "index.html", "language": "html", "content": MOCK_HTML}],
    }
    return "Preparing a sample project.\n---\n" + json.dumps(payload, indent=2)


class MockAdapter(ProviderAdapter):
    """Replays ``mock_response`` in fixed-size fragments."""

    provider_id = ProviderId.MOCK

    def __init__(self, *, chunk_size: int = 64, delay: float = 0.0) -> None:
        self.chunk_size = max(1, chunk_size)
        self.delay = delay

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        text = mock_response(request.model_id)
        for i in range(0, len(text), self.chunk_size):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield text[i:i + self.chunk_size]
