"""
Image captioning via the Gemini REST API.

Turns an uploaded image into a title, a description and a list of tags.
"""

import json
import logging
from typing import Optional

import requests
from pydantic import ValidationError

from config import get_settings
from schemas import PinMetadata

logger = logging.getLogger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"

METADATA_PROMPT = """
Analyse this image and generate a JSON object with the following properties:
{
  title (maximum 32 characters): A short and pleasing title that summarizes the image
  description (maximum 1000 characters): A detailed description including main subjects, setting, and any notable actions or objects.
  tags: an array of tags in lowercase that describe the image (max 12): ["tag1", "tag2", "tag3"]
}
Answer ONLY in JSON format.
"""


class CaptioningError(RuntimeError):
    """Raised when metadata could not be generated for an image."""


def parse_metadata(text: str) -> PinMetadata:
    """Parse model output, tolerating ```json fences around the object."""
    cleaned = text.replace("```json", "").replace("```", "").strip()
    try:
        return PinMetadata(**json.loads(cleaned))
    except (json.JSONDecodeError, TypeError, ValidationError) as e:
        raise CaptioningError(f"Unparseable captioning output: {e}") from e


def generate_metadata(image_data: str, mime_type: str, api_key: Optional[str] = None) -> PinMetadata:
    """
    Ask Gemini for title/description/tags of a base64 encoded image.

    Args:
        image_data: Base64 encoded image bytes
        mime_type: Image MIME type, e.g. "image/png"
        api_key: Overrides GEMINI_API_KEY

    Returns:
        PinMetadata

    Raises:
        CaptioningError: missing key, HTTP failure or unparseable answer
    """
    settings = get_settings()
    api_key = api_key or settings.gemini_api_key
    if not api_key:
        raise CaptioningError("GEMINI_API_KEY is not configured")

    url = f"{GEMINI_API_BASE}/{settings.gemini_model}:generateContent"
    payload = {
        "contents": [
            {
                "parts": [
                    {"text": METADATA_PROMPT},
                    {"inline_data": {"mime_type": mime_type, "data": image_data}},
                ]
            }
        ]
    }

    logger.debug(f"Requesting metadata from {settings.gemini_model} ({mime_type})")
    try:
        response = requests.post(
            url,
            json=payload,
            headers={"x-goog-api-key": api_key},
            timeout=settings.gemini_timeout_seconds,
        )
        response.raise_for_status()
        body = response.json()
    except requests.RequestException as e:
        logger.error(f"Gemini request failed: {e}")
        raise CaptioningError(f"Gemini request failed: {e}") from e
    except ValueError as e:
        raise CaptioningError("Gemini returned a non-JSON response") from e

    try:
        text = body["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as e:
        raise CaptioningError("Gemini response had no text candidate") from e

    metadata = parse_metadata(text)
    logger.info(f"Generated metadata: '{metadata.title}' with {len(metadata.tags)} tags")
    return metadata
