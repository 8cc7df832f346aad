import logging
from typing import Any, Dict, List, Optional

import httpx

from hex_mosaic.shared.errors import ModelReturnedText, NoCandidate, NoImage, ServiceError
from hex_mosaic.shared.schemas import GenerateRequest, GenerateResponse

logger = logging.getLogger("hex_mosaic.server.engine")

# --- Constants ---
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
TEMPERATURE = 0.01
IMAGE_ONLY_PREFIX = "Return only an image (PNG). Do not include any text in the response. "

Part = Dict[str, Any]


def _pick_image(parts: List[Part], inputs: List[str]) -> Optional[str]:
    """
    Last inline image that is not an echo of an input, else the last inline
    image at all.
    """
    echoed = set(p for p in inputs if p)
    fallback = None
    for part in reversed(parts):
        data = (part.get("inlineData") or {}).get("data")
        if not data:
            continue
        if data not in echoed:
            return data
        if fallback is None:
            fallback = data
    return fallback


def _first_text(parts: List[Part]) -> Optional[str]:
    return next((p["text"] for p in parts if p.get("text")), None)


class GenerationEngine:
    """
    Calls Gemini's generateContent endpoint for one tile.
    When the model answers with text only, the call is retried once with an
    image-only instruction before giving up.
    """

    def __init__(self, api_key: Optional[str], client: httpx.AsyncClient,
                 base_url: str = GEMINI_BASE_URL):
        self.api_key = api_key
        self.client = client
        self.base_url = base_url.rstrip("/")

    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        if not self.api_key:
            raise ServiceError("Server missing GEMINI_API_KEY")

        # 1. First attempt
        parts = await self._call_once(request, request.prompt)
        if parts is None:
            raise NoCandidate()

        image = _pick_image(parts, request.image_parts)
        if image:
            return GenerateResponse(image_data=image)

        text = _first_text(parts)
        if text is None:
            raise NoImage()

        # 2. Retry once with a stronger instruction
        logger.info(f"Model answered with text ({len(text)} chars), retrying for an image")
        retry_parts = await self._call_once(request, IMAGE_ONLY_PREFIX + request.prompt)
        image = _pick_image(retry_parts or [], request.image_parts)
        if not image:
            raise ModelReturnedText(text)
        return GenerateResponse(image_data=image, retry=True)

    def _build_body(self, request: GenerateRequest, prompt: str) -> Dict[str, Any]:
        parts: List[Part] = [
            {"inlineData": {"data": b64, "mimeType": request.mime_type}}
            for b64 in request.image_parts
        ]
        if prompt:
            parts.append({"text": prompt})
        return {
            "contents": [{"parts": parts}],
            "generationConfig": {"temperature": TEMPERATURE, "candidateCount": 1},
        }

    async def _call_once(self, request: GenerateRequest, prompt: str) -> Optional[List[Part]]:
        """Returns the first candidate's parts, or None without a candidate."""
        url = f"{self.base_url}/models/{request.model}:generateContent"
        try:
            resp = await self.client.post(
                url, json=self._build_body(request, prompt),
                headers={"x-goog-api-key": self.api_key}
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Upstream returned {e.response.status_code}: {e.response.text}")
            raise ServiceError("Unexpected server error", e.response.text) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Upstream call failed: {e}")
            raise ServiceError("Unexpected server error", str(e)) from e

        candidates = data.get("candidates") or []
        if not candidates:
            return None
        return (candidates[0].get("content") or {}).get("parts") or []
