"""Gateway around the Gemini image, Imagen and Veo video APIs."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

import requests
from google import genai
from google.genai import types

from config.settings import AppConfig
from modules.pipelines.errors import (
    RATE_LIMIT_MESSAGE,
    SERVER_ERROR_MESSAGE,
    GenerationFailed,
    TransientServiceError,
    ValidationError,
)
from modules.utils.image_utils import ImagePayload

logger = logging.getLogger(__name__)

VIDEO_ASPECT_RATIOS = ("16:9", "9:16")

MASK_PROMPT_TEMPLATE = (
    'Apply the following instruction only to the masked area of the image: "{prompt}". '
    "Preserve the unmasked area."
)
NO_IMAGE_MESSAGE = (
    "The model did not return an image. It might have refused the request. "
    "Please try a different image or prompt."
)
NO_GENERATED_IMAGE_MESSAGE = (
    "The model did not return an image. It might have refused the request. "
    "Please try different options."
)

ProgressCallback = Callable[[str], None]


@dataclass(slots=True)
class GeneratedContent:
    """Normalized payload returned by image operations."""

    image_url: Optional[str]
    text: Optional[str] = None


def _error_payload(exc: Exception) -> Optional[dict[str, Any]]:
    """Extract ``{code, status, message}`` from an SDK error or a JSON message."""
    status = getattr(exc, "status", None)
    code = getattr(exc, "code", None)
    message = getattr(exc, "message", None)
    if isinstance(code, int) and (status or message):
        return {"code": code, "status": status, "message": message}

    try:
        parsed = json.loads(str(exc))
    except (TypeError, ValueError):
        return None
    if not isinstance(parsed, dict):
        return None
    error = parsed.get("error")
    return error if isinstance(error, dict) else None


def normalize_error(exc: Exception) -> GenerationFailed:
    """Map any remote failure onto the GenerationFailed taxonomy."""
    if isinstance(exc, GenerationFailed):
        return exc

    payload = _error_payload(exc)
    if payload is None or not payload.get("message"):
        return GenerationFailed(str(exc))

    status = payload.get("status")
    code = payload.get("code")
    if status == "RESOURCE_EXHAUSTED":
        return TransientServiceError(RATE_LIMIT_MESSAGE)
    if (isinstance(code, int) and code >= 500) or status == "UNKNOWN":
        return TransientServiceError(SERVER_ERROR_MESSAGE)
    return GenerationFailed(str(payload["message"]))


def _enum_name(value: Any) -> str:
    return str(getattr(value, "name", value) or "")


class GenerationGateway:
    """Typed access to edit-image, generate-image and generate-video calls."""

    def __init__(
        self,
        config: AppConfig,
        client: Optional[Any] = None,
        http: Optional[Any] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if client is None and not config.api_key:
            raise ValidationError("API key is not set. Set GEMINI_API_KEY or API_KEY.")
        self.config = config
        self._client = client or genai.Client(api_key=config.api_key)
        self._http = http or requests.Session()
        self._sleep = sleep
        self._clock = clock

    # Image editing --------------------------------------------------------
    def edit_image(
        self,
        images: Sequence[ImagePayload],
        prompt: str,
        mask_base64: Optional[str] = None,
    ) -> GeneratedContent:
        """Edit one or more images with a text instruction."""
        if not images:
            raise ValidationError("At least one image must be provided for editing.")

        full_prompt = prompt
        try:
            parts = [
                types.Part.from_bytes(data=image.raw_bytes(), mime_type=image.mime_type)
                for image in images
            ]
            if mask_base64:
                mask = ImagePayload(base64=mask_base64, mime_type="image/png")
                parts.append(types.Part.from_bytes(data=mask.raw_bytes(), mime_type=mask.mime_type))
                full_prompt = MASK_PROMPT_TEMPLATE.format(prompt=prompt)
        except ValueError as exc:
            raise ValidationError(f"Image data is not valid base64: {exc}") from exc
        parts.append(types.Part.from_text(text=full_prompt))

        try:
            response = self._client.models.generate_content(
                model=self.config.edit_model,
                contents=parts,
                config=types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"]),
            )
            return self._parse_edit_response(response)
        except Exception as exc:  # noqa: BLE001
            error = normalize_error(exc)
            logger.error("Error calling Gemini API: %s", error)
            raise error from exc

    def _parse_edit_response(self, response: Any) -> GeneratedContent:
        result = GeneratedContent(image_url=None, text=None)
        candidates = getattr(response, "candidates", None) or []
        candidate = candidates[0] if candidates else None
        content = getattr(candidate, "content", None)

        for part in getattr(content, "parts", None) or []:
            text = getattr(part, "text", None)
            inline = getattr(part, "inline_data", None)
            if text:
                result.text = f"{result.text}\n{text}" if result.text else text
            elif inline is not None and getattr(inline, "data", None):
                data = inline.data
                if isinstance(data, str):
                    payload = ImagePayload(base64=data, mime_type=inline.mime_type or "image/png")
                else:
                    payload = ImagePayload.from_bytes(data, inline.mime_type)
                result.image_url = payload.to_data_url()

        if result.image_url:
            return result

        if result.text:
            raise GenerationFailed(f'The model responded: "{result.text}"')

        message = NO_IMAGE_MESSAGE
        if _enum_name(getattr(candidate, "finish_reason", None)) == "SAFETY":
            ratings = getattr(candidate, "safety_ratings", None) or []
            blocked = ", ".join(
                _enum_name(rating.category) for rating in ratings if getattr(rating, "blocked", False)
            )
            message = (
                f"The request was blocked for safety reasons. Categories: {blocked or 'Unknown'}. "
                "Please modify your prompt or image."
            )
        raise GenerationFailed(message)

    # Text-to-image --------------------------------------------------------
    def generate_image(self, prompt: str) -> GeneratedContent:
        """Generate a single square JPEG from a prompt."""
        try:
            response = self._client.models.generate_images(
                model=self.config.image_model,
                prompt=prompt,
                config=types.GenerateImagesConfig(
                    number_of_images=1,
                    output_mime_type="image/jpeg",
                    aspect_ratio="1:1",
                ),
            )
            generated = getattr(response, "generated_images", None) or []
            if not generated:
                raise GenerationFailed(NO_GENERATED_IMAGE_MESSAGE)
            image_bytes = generated[0].image.image_bytes
            payload = ImagePayload.from_bytes(image_bytes, "image/jpeg")
            return GeneratedContent(image_url=payload.to_data_url(), text=None)
        except Exception as exc:  # noqa: BLE001
            error = normalize_error(exc)
            logger.error("Error calling Gemini API for image generation: %s", error)
            raise error from exc

    # Video ----------------------------------------------------------------
    def generate_video(
        self,
        prompt: str,
        image: Optional[ImagePayload] = None,
        aspect_ratio: str = "16:9",
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes:
        """Submit a video job, poll until it finishes and download the result."""
        if aspect_ratio not in VIDEO_ASPECT_RATIOS:
            raise ValidationError(f"Unsupported aspect ratio '{aspect_ratio}'.")
        report = on_progress or (lambda _message: None)

        try:
            report("Initializing video generation...")
            request: dict[str, Any] = {
                "model": self.config.video_model,
                "prompt": prompt,
                "config": types.GenerateVideosConfig(
                    number_of_videos=1,
                    aspect_ratio=aspect_ratio,
                ),
            }
            if image is not None:
                request["image"] = types.Image(image_bytes=image.raw_bytes(), mime_type=image.mime_type)
            operation = self._client.models.generate_videos(**request)

            report("Polling for results, this may take a few minutes...")
            operation = self._wait_for_operation(operation)

            error = getattr(operation, "error", None)
            if error:
                message = error.get("message") if isinstance(error, dict) else getattr(error, "message", None)
                raise GenerationFailed(str(message or "Video generation failed during operation."))

            uri = self._video_uri(operation)
            if not uri:
                raise GenerationFailed("Video generation completed, but no download link was found.")

            report("Finalizing and fetching your video...")
            response = self._http.get(uri, params={"key": self.config.api_key}, timeout=120)
            if not response.ok:
                raise GenerationFailed(f"Failed to download video file. Status: {response.reason}")
            if not response.content:
                raise GenerationFailed("The downloaded video file is empty.")
            return response.content
        except Exception as exc:  # noqa: BLE001
            error = normalize_error(exc)
            logger.error("Error calling Video Generation API: %s", error)
            raise error from exc

    def _wait_for_operation(self, operation: Any) -> Any:
        started = self._clock()
        while not getattr(operation, "done", False):
            if self._clock() - started >= self.config.video_max_wait:
                raise GenerationFailed(
                    f"Video generation did not finish within {int(self.config.video_max_wait)} seconds."
                )
            self._sleep(self.config.video_poll_interval)
            operation = self._client.operations.get(operation)
        return operation

    @staticmethod
    def _video_uri(operation: Any) -> Optional[str]:
        response = getattr(operation, "response", None)
        videos = getattr(response, "generated_videos", None) or []
        if not videos:
            return None
        video = getattr(videos[0], "video", None)
        return getattr(video, "uri", None)
