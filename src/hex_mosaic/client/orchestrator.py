import logging
from typing import Callable, List, Optional, Protocol, Sequence, Set

import httpx
from PIL import Image

from hex_mosaic.client.context import decode_png
from hex_mosaic.shared.errors import NoImage, ServiceError, rejection_from_response
from hex_mosaic.shared.schemas import (
    DEFAULT_MIME_TYPE, DEFAULT_MODEL, ErrorResponse, GenerateRequest, GenerateResponse
)

logger = logging.getLogger("hex_mosaic.orchestrator")

Commit = Callable[[str, Image.Image], None]


class GenerationService(Protocol):
    async def generate(self, prompt: str, context_images: List[str]) -> str:
        """Returns a base64 PNG or raises GenerationRejected."""
        ...


class HttpGenerationService:
    """Client for the proxy's POST /api/generate."""

    def __init__(self, client: httpx.AsyncClient, model: str = DEFAULT_MODEL,
                 mime_type: str = DEFAULT_MIME_TYPE):
        self.client = client
        self.model = model
        self.mime_type = mime_type

    async def generate(self, prompt: str, context_images: List[str]) -> str:
        request = GenerateRequest(
            prompt=prompt, image_parts=context_images,
            mime_type=self.mime_type, model=self.model
        )
        try:
            resp = await self.client.post("/api/generate", json=request.model_dump(by_alias=True))
        except httpx.HTTPError as e:
            raise ServiceError("Generation request failed", str(e)) from e

        if resp.status_code != 200:
            try:
                body = ErrorResponse(**resp.json())
            except (ValueError, TypeError):
                raise ServiceError(f"API error {resp.status_code}", resp.text) from None
            raise rejection_from_response(body)

        try:
            data = GenerateResponse(**resp.json())
        except (ValueError, TypeError):
            raise ServiceError("Malformed response", resp.text) from None
        if not data.image_data:
            raise NoImage("No image in response")
        if data.retry:
            logger.info("Service needed the image-only retry for this tile")
        return data.image_data


class GenerationOrchestrator:
    """
    Single-flight gate around the generation service.

    A key is added to `loading` before the call is issued and released exactly
    once when it resolves or rejects. On success `commit` runs in the same
    synchronous step as the release, so nothing can observe the key as neither
    loading nor committed.
    """

    def __init__(self, service: GenerationService, on_change: Optional[Callable[[], None]] = None):
        self.service = service
        self.on_change = on_change

    async def run(self, key: int, loading: Set[int], prompt: str,
                  context_images: Sequence[str], commit: Commit) -> bool:
        # No await before the key is claimed: a second caller sees it in `loading`.
        if key in loading:
            logger.debug(f"Generation for key {key} already in flight, ignoring")
            return False

        loading.add(key)
        self._notify()
        try:
            payload = await self.service.generate(prompt, list(context_images))
            image = await decode_png(payload)
            commit(payload, image)
        finally:
            loading.discard(key)
            self._notify()
        return True

    def _notify(self):
        if self.on_change is not None:
            self.on_change()
