from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_MODEL = "gemini-2.5-flash-image-preview"
DEFAULT_MIME_TYPE = "image/png"


# --- Enums (Strict Vocabulary) ---

class ErrorKind(str, Enum):
    NO_CANDIDATE = "NoCandidateInResponse"
    NO_IMAGE = "NoImageOrTextInResponse"
    MODEL_RETURNED_TEXT = "ModelReturnedTextInsteadOfImage"
    UPSTREAM = "UpstreamServiceError"
    DECODE = "ImageDecodeError"


# --- Generation RPC ---

class GenerateRequest(BaseModel):
    """
    Payload of POST /api/generate.
    `image_parts` are base64 PNG context images, sent before the prompt.
    On the wire the fields are camelCase (imageParts, mimeType); snake_case
    names are accepted too.
    """
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = ""
    image_parts: List[str] = Field(default_factory=list, alias="imageParts")
    mime_type: str = Field(DEFAULT_MIME_TYPE, alias="mimeType")
    model: str = DEFAULT_MODEL

    @field_validator('image_parts')
    def check_parts(cls, v):
        if any(not part for part in v):
            raise ValueError('image_parts must not contain empty payloads')
        return v


class GenerateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_data: str = Field(alias="imageData")
    retry: bool = False # True when the image came from the image-only retry


class ErrorResponse(BaseModel):
    """Body of every non-200 answer from /api/generate."""
    error: str
    kind: ErrorKind
    text: Optional[str] = None # Model text when it refused to draw
    details: Optional[str] = None
