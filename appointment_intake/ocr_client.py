"""
Image-to-text client interface for reading appointment notes from photos.
Supports StubImageTextExtractor (offline) and MistralImageTextExtractor (Pixtral vision model).
"""

import base64
import io
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests
from PIL import Image, UnidentifiedImageError

from appointment_intake.logging_helper import Log
from appointment_intake import settings_manager

MISTRAL_API_URL = "https://api.mistral.ai/v1/chat/completions"
REQUEST_TIMEOUT_SECONDS = 30
# Maximum image size in bytes
MAX_IMAGE_SIZE = 20 * 1024 * 1024

_MIME_TYPES = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
}
_ALPHANUMERIC = re.compile(r"[A-Za-z0-9]")

OCR_PROMPT = """You are an expert OCR system. Extract ALL text from this image accurately.

Instructions:
- Extract every word, number, and character you can see
- Preserve the original text layout and line breaks
- Include handwritten and printed text
- If you see dates, times, or department names, include them exactly as written
- Do not add explanations or formatting - just return the raw extracted text

Return ONLY the extracted text, nothing else."""


class ImageTextExtractionError(RuntimeError):
    """Raised when no usable text can be read from an image."""


@dataclass(frozen=True)
class OCRResult:
    text: str
    confidence: float


def estimate_ocr_confidence(text: str) -> float:
    """
    Vision chat models do not report a confidence score, so this is a fixed
    two-bucket estimate based on how much text came back.
    """
    return 0.90 if len(text) > 10 else 0.70


def validate_extracted_text(text: Optional[str]) -> bool:
    """Check that extracted text has at least 3 characters and something alphanumeric."""
    if not isinstance(text, str):
        return False

    trimmed = text.strip()
    if len(trimmed) < 3:
        return False

    return _ALPHANUMERIC.search(trimmed) is not None


def detect_mime_type(image_bytes: bytes) -> str:
    """
    Open the image with Pillow to check it is readable and pick its MIME type.

    Raises:
        ImageTextExtractionError: if the bytes are empty, too large or not an image
    """
    if not image_bytes:
        raise ImageTextExtractionError("No image data")
    if len(image_bytes) > MAX_IMAGE_SIZE:
        raise ImageTextExtractionError(f"Image too large: {len(image_bytes)} bytes (max {MAX_IMAGE_SIZE})")

    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            width, height = image.size
            image_format = image.format
    except (UnidentifiedImageError, OSError) as e:
        raise ImageTextExtractionError(f"Unreadable image: {e}") from e

    if width == 0 or height == 0:
        raise ImageTextExtractionError(f"Invalid image dimensions: {width}x{height}")

    Log.kv({"stage": "ocr", "image_format": image_format, "image_size": f"{width}x{height}"})
    return _MIME_TYPES.get(image_format or "", "image/png")


class ImageTextExtractor(ABC):
    """Abstract base class for image-to-text clients."""

    @abstractmethod
    def extract_text(self, image_bytes: bytes) -> OCRResult:
        """
        Read all text from an image.

        Args:
            image_bytes: Raw image file contents

        Returns:
            OCRResult with the text and an estimated confidence

        Raises:
            ImageTextExtractionError: if no text could be read
        """
        pass


class StubImageTextExtractor(ImageTextExtractor):
    """
    Stub OCR client for offline use and tests.
    Returns fixed text regardless of the image.
    """

    DEFAULT_TEXT = "Dentist appointment tomorrow at 3pm"

    def __init__(self, text: str = DEFAULT_TEXT):
        self.text = text

    def extract_text(self, image_bytes: bytes) -> OCRResult:
        Log.section("Stub OCR Client")
        Log.info("Using stub OCR client (offline mode)")

        confidence = estimate_ocr_confidence(self.text)
        Log.kv({"stage": "ocr", "provider": "stub", "result": "success", "chars": len(self.text)})
        return OCRResult(text=self.text, confidence=confidence)


class MistralImageTextExtractor(ImageTextExtractor):
    """
    Mistral vision client for real text extraction.
    Uses Pixtral through the chat completions API.
    """

    def __init__(self, api_key: Optional[str], model: str = "pixtral-12b-2409"):
        self.api_key = api_key
        self.model = model
        self.api_url = MISTRAL_API_URL

    def _build_payload(self, image_bytes: bytes, mime_type: str) -> dict:
        base64_image = base64.b64encode(image_bytes).decode("utf-8")
        Log.info(f"Image converted to base64: {len(base64_image)} chars")
        return {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": OCR_PROMPT},
                        {"type": "image_url", "image_url": f"data:{mime_type};base64,{base64_image}"},
                    ],
                }
            ],
            # Low temperature for more deterministic output
            "temperature": 0.1,
            "max_tokens": 1000,
        }

    def extract_text(self, image_bytes: bytes) -> OCRResult:
        Log.section("Mistral OCR Client")
        Log.info(f"Using Mistral vision API ({self.model})")

        if not self.api_key:
            raise ImageTextExtractionError("Mistral API key is missing or invalid. Set MISTRAL_API_KEY.")

        mime_type = detect_mime_type(image_bytes)
        payload = self._build_payload(image_bytes, mime_type)
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        try:
            Log.kv({"stage": "ocr", "provider": "mistral", "model": self.model, "status": "requesting"})
            response = requests.post(
                self.api_url,
                headers=headers,
                json=payload,
                timeout=REQUEST_TIMEOUT_SECONDS
            )

            Log.info(f"API response status: {response.status_code}")
            if response.status_code != 200:
                Log.error(f"Mistral API error: {response.text[:500]}")
            response.raise_for_status()

            result = response.json()
        except requests.exceptions.RequestException as e:
            Log.error(f"Mistral API request failed: {e}")
            Log.kv({"stage": "ocr", "provider": "mistral", "result": "failed", "reason": "api_error", "error": str(e)})
            raise ImageTextExtractionError(f"Mistral OCR failed: {e}") from e
        except ValueError as e:
            Log.error(f"Mistral API returned invalid JSON: {e}")
            raise ImageTextExtractionError(f"Mistral OCR failed: {e}") from e

        choices = result.get("choices") or [{}]
        content = choices[0].get("message", {}).get("content") or ""
        text = content.strip() if isinstance(content, str) else ""

        if not text:
            Log.warn("Empty response from Mistral")
            Log.kv({"stage": "ocr", "provider": "mistral", "result": "failed", "reason": "empty_response"})
            raise ImageTextExtractionError("Mistral OCR failed: No text extracted from image")

        confidence = estimate_ocr_confidence(text)
        Log.info(f"Mistral extracted: {text}")
        Log.kv({"stage": "ocr", "provider": "mistral", "result": "success", "chars": len(text), "confidence": confidence})
        return OCRResult(text=text, confidence=confidence)


def get_ocr_client() -> ImageTextExtractor:
    """
    Factory function to get the appropriate OCR client.
    Uses MistralImageTextExtractor when MISTRAL_API_KEY is set, otherwise the stub.
    USE_STUB forces the stub.
    """
    if settings_manager.use_stub():
        Log.info("USE_STUB flag set - using stub OCR client")
        return StubImageTextExtractor()

    api_key = settings_manager.get_api_key(settings_manager.MISTRAL_API_KEY_ENV)
    if api_key:
        Log.info("Mistral API key found - using Mistral OCR client")
        return MistralImageTextExtractor(api_key, model=settings_manager.get_model("ocr_model"))

    Log.info("No Mistral API key - using stub OCR client")
    return StubImageTextExtractor()
