"""Classifier client for the external image-understanding provider.

One request per analysis, no internal retry. The provider is asked for JSON
matching :data:`RESPONSE_SCHEMA`, but its reply is validated again by
:func:`parse_analysis_result` before anything reaches the session.
"""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Any, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError, model_validator

from plantsense.analysis.errors import EmptyResponseError, MalformedResponseError, ProviderError
from plantsense.analysis.models import INVALID_IMAGE, AnalysisResult

if TYPE_CHECKING:
    from plantsense.config import Settings

logger = logging.getLogger(__name__)

INSTRUCTION = (
    "You must only accept real photographic images of trees or plants. Automatically reject any "
    "uploaded image that is animated, illustrated, cartoon-style, computer-generated, AI-generated, "
    "digitally drawn, or not representing a real-life physical plant. If the image is rejected, set "
    '"isHealthy" to false, "issueName" to "Invalid Image", "description" to "The uploaded image is '
    'not a real photograph of a plant. Please upload a clear, real-life photo.", and provide an '
    'empty array for "recommendations".\n\n'
    "If the image is a valid photograph of a plant, analyze it. Identify any visible signs of "
    "nutritional deficiencies or diseases. Provide the name of the issue and a detailed "
    'description. For the "recommendations", provide a list of very short, actionable bullet '
    'points. Each point must be a concise, direct instruction (e.g., "Apply a nitrogen-rich '
    'fertilizer," "Water twice a week," "Move to a sunnier location"). Do not include lengthy '
    "explanations or extra information in the recommendations. If the plant appears healthy, state "
    "that clearly and provide general care tips in the same concise, point-wise format. Structure "
    "your response in the requested JSON format."
)

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "isHealthy": {"type": "BOOLEAN", "description": "Is the plant healthy?"},
        "issueName": {
            "type": "STRING",
            "description": 'Name of the deficiency, disease, or "Healthy Plant".',
        },
        "description": {"type": "STRING", "description": "A detailed description of the findings."},
        "recommendations": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "A list of recommended actions or care tips.",
        },
    },
    "required": ["isHealthy", "issueName", "description", "recommendations"],
}


class Classifier(Protocol):
    """Protocol for plant image classifiers."""

    async def analyze(self, image: bytes) -> AnalysisResult:
        """Diagnose a JPEG image.

        Raises:
            EmptyResponseError: The provider returned no content.
            MalformedResponseError: The content does not match the response schema.
            ProviderError: Transport or provider-side failure.
        """
        ...


class _ResultPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    is_healthy: StrictBool = Field(alias="isHealthy")
    issue_name: StrictStr = Field(alias="issueName", min_length=1)
    description: StrictStr = Field(min_length=1)
    recommendations: list[StrictStr]

    @model_validator(mode="after")
    def _recommendations_required_for_plants(self) -> _ResultPayload:
        if not self.recommendations and self.issue_name != INVALID_IMAGE:
            raise ValueError("recommendations may only be empty for rejected images")
        return self


def parse_analysis_result(text: str) -> AnalysisResult:
    """Validate a provider reply against the response schema.

    Raises:
        MalformedResponseError: If the text is not JSON or any field is missing or mistyped.
    """
    try:
        payload = _ResultPayload.model_validate_json(text.strip())
    except ValidationError as exc:
        logger.warning("Classifier reply failed schema validation: %s", exc.errors(include_input=False))
        raise MalformedResponseError() from exc

    return AnalysisResult(
        is_healthy=payload.is_healthy,
        issue_name=payload.issue_name,
        description=payload.description,
        recommendations=tuple(payload.recommendations),
    )


def build_request(image: bytes) -> dict[str, Any]:
    """Build the generateContent body: one inline image part plus the instruction."""
    return {
        "contents": [
            {
                "parts": [
                    {
                        "inline_data": {
                            "mime_type": "image/jpeg",
                            "data": base64.b64encode(image).decode("ascii"),
                        }
                    },
                    {"text": INSTRUCTION},
                ]
            }
        ],
        "generationConfig": {
            "responseMimeType": "application/json",
            "responseSchema": RESPONSE_SCHEMA,
        },
    }


def _extract_text(body: Any) -> str:
    try:
        parts = body["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return ""
    if not isinstance(parts, list):
        return ""
    texts = (part.get("text") for part in parts if isinstance(part, dict))
    return "".join(text for text in texts if isinstance(text, str))


class GeminiClassifier:
    """Calls the Gemini ``generateContent`` REST endpoint."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        if not settings.gemini_api_key:
            logger.error("PLANTSENSE_GEMINI_API_KEY is not set; classifier requests will be rejected")
        self._url = f"{settings.gemini_base_url.rstrip('/')}/v1beta/models/{settings.gemini_model}:generateContent"
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout)
        self._headers = {"x-goog-api-key": settings.gemini_api_key or ""}

    async def analyze(self, image: bytes) -> AnalysisResult:
        try:
            response = await self._client.post(self._url, json=build_request(image), headers=self._headers)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Error analyzing image with Gemini API: %r", exc)
            raise ProviderError() from exc

        text = _extract_text(body).strip()
        if not text:
            raise EmptyResponseError()
        return parse_analysis_result(text)

    async def aclose(self) -> None:
        await self._client.aclose()
