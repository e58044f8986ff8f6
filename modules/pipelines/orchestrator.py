"""Stage orchestration: single runs, batches, two-step, fan-out and chains."""

from __future__ import annotations

import base64
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

from config.settings import AppConfig
from modules.pipelines.errors import (
    GenerationFailed,
    PersistenceError,
    StageBusyError,
    ValidationError,
)
from modules.pipelines.gateway import GeneratedContent, GenerationGateway, ProgressCallback
from modules.prompts.style_presets import StylePresetRegistry, apply_location, default_registry
from modules.services.history_service import GenerationHistoryService, GenerationRecord
from modules.services.storage_service import StorageService
from modules.utils.image_utils import ImagePayload, InputItem, embed_watermark, resize_image_to_match

logger = logging.getLogger(__name__)

PromptSource = Union[str, Callable[[], str]]

TWO_STEP_FAILURE_MESSAGE = "Step 1 (line art) failed to generate an image."
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


class StageStatus(str, Enum):
    """Lifecycle of a single stage attempt."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(slots=True)
class PipelineStageResult:
    """Output of one stage; ``image_url`` is always a watermarked data URL."""

    image_url: str
    secondary_image_url: Optional[str] = None
    text: Optional[str] = None
    source_filename: Optional[str] = None
    record_id: Optional[int] = None
    persistence_error: Optional[PersistenceError] = None

    @property
    def saved(self) -> bool:
        return self.record_id is not None and self.persistence_error is None

    def as_input(self, name: Optional[str] = None) -> InputItem:
        """Wrap the output image so it can seed another stage."""
        return InputItem.from_data_url(self.image_url, name or self.source_filename or "result.png")


@dataclass(slots=True)
class VideoResult:
    """A generated video and, when saved, its history id and playback handle."""

    video_blob: bytes
    source_filename: Optional[str] = None
    video_url: Optional[str] = None
    record_id: Optional[int] = None
    persistence_error: Optional[PersistenceError] = None

    @property
    def saved(self) -> bool:
        return self.record_id is not None and self.persistence_error is None


@dataclass(slots=True)
class StageState:
    """Observable state of a named stage."""

    status: StageStatus = StageStatus.IDLE
    error: Optional[str] = None
    results: List[PipelineStageResult] = field(default_factory=list)
    attempts: int = 0

    @property
    def result(self) -> Optional[PipelineStageResult]:
        return self.results[-1] if self.results else None


@dataclass(slots=True)
class StageDefinition:
    """A registered chain stage: its prompt and optional companion image."""

    stage_id: str
    prompt: str
    secondary: Optional[InputItem] = None
    filename: Optional[str] = None


@dataclass(slots=True)
class BatchResult:
    """Aggregate outcome of a batch run."""

    success_count: int = 0
    fail_count: int = 0
    results: List[PipelineStageResult] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.success_count + self.fail_count


def sanitize_filename(name: Optional[str], fallback: str = "generated-image.png") -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", name or fallback)


def _payload(item: InputItem) -> ImagePayload:
    try:
        payload = item.payload
        base64.b64decode(payload.base64, validate=True)
    except ValueError as exc:  # binascii.Error included
        raise ValidationError(f"Input '{item.name}' is not a valid image data URL.") from exc
    return payload


class PipelineOrchestrator:
    """Run generation stages with an in-flight guard per stage."""

    def __init__(
        self,
        gateway: GenerationGateway,
        history: GenerationHistoryService,
        config: Optional[AppConfig] = None,
        storage: Optional[StorageService] = None,
        styles: Optional[StylePresetRegistry] = None,
    ) -> None:
        self.config = config or AppConfig()
        self.gateway = gateway
        self.history = history
        self.storage = storage if storage is not None else history.storage
        self.styles = styles or default_registry()
        self._states: Dict[str, StageState] = {}
        self._stages: Dict[str, StageDefinition] = {}
        self._guard = threading.Lock()

    # Stage bookkeeping ----------------------------------------------------
    def register_stage(self, definition: StageDefinition) -> None:
        self._stages[definition.stage_id] = definition

    def stage_definition(self, stage_id: str) -> StageDefinition:
        try:
            return self._stages[stage_id]
        except KeyError as exc:
            raise ValidationError(f"Stage '{stage_id}' is not registered.") from exc

    def stage_state(self, stage_id: str) -> StageState:
        with self._guard:
            return self._states.setdefault(stage_id, StageState())

    def is_running(self, stage_id: str) -> bool:
        return self.stage_state(stage_id).status is StageStatus.RUNNING

    def reset_stage(self, stage_id: str) -> None:
        with self._guard:
            state = self._states.get(stage_id)
            if state is not None and state.status is StageStatus.RUNNING:
                raise StageBusyError(stage_id)
            self._states[stage_id] = StageState()

    def record_error(self, stage_id: str, message: str) -> None:
        """Mark a stage failed without attempting a call, unless it is in flight."""
        with self._guard:
            state = self._states.setdefault(stage_id, StageState())
            if state.status is not StageStatus.RUNNING:
                state.status = StageStatus.FAILED
                state.error = message

    def _begin(self, stage_id: str) -> StageState:
        with self._guard:
            state = self._states.setdefault(stage_id, StageState())
            if state.status is StageStatus.RUNNING:
                raise StageBusyError(stage_id)
            state.status = StageStatus.RUNNING
            state.error = None
            state.results = []
            state.attempts += 1
            return state

    def _finish(
        self,
        stage_id: str,
        results: Sequence[PipelineStageResult],
        error: Optional[str] = None,
    ) -> None:
        with self._guard:
            state = self._states[stage_id]
            state.results = list(results)
            state.error = error
            state.status = StageStatus.SUCCEEDED if results else StageStatus.FAILED

    def _reject(self, stage_id: str, message: str) -> ValidationError:
        self.record_error(stage_id, message)
        return ValidationError(message)

    # Core generation ------------------------------------------------------
    def _generate(
        self,
        images: Sequence[ImagePayload],
        prompt: str,
        *,
        mask_base64: Optional[str] = None,
        source_filename: Optional[str] = None,
        secondary_image_url: Optional[str] = None,
        generative: bool = False,
    ) -> PipelineStageResult:
        content: GeneratedContent
        if generative:
            content = self.gateway.generate_image(prompt)
        else:
            content = self.gateway.edit_image(images, prompt, mask_base64)
        if not content.image_url:
            raise GenerationFailed("The model did not return an image.")

        try:
            image_url = embed_watermark(content.image_url, self.config.watermark_text)
        except (OSError, ValueError) as exc:
            raise GenerationFailed(f"The generated image could not be decoded: {exc}") from exc

        result = PipelineStageResult(
            image_url=image_url,
            secondary_image_url=secondary_image_url,
            text=content.text,
            source_filename=source_filename,
        )
        self._persist(result)
        return result

    def _persist(self, result: PipelineStageResult) -> None:
        record = GenerationRecord(
            image_url=result.image_url,
            secondary_image_url=result.secondary_image_url,
            text=result.text,
            original_filename=result.source_filename,
        )
        try:
            result.record_id = self.history.append(record)
        except PersistenceError as exc:
            logger.error("Generated %s but could not save it to history: %s", result.source_filename, exc)
            result.persistence_error = exc

    # Public operations ----------------------------------------------------
    def run_stage(
        self,
        stage_id: str,
        primary: Optional[InputItem],
        secondary: Optional[InputItem],
        prompt: str,
        *,
        mask_base64: Optional[str] = None,
        source_filename: Optional[str] = None,
        generative: bool = False,
    ) -> PipelineStageResult:
        """Run one generation attempt for ``stage_id`` and persist the result."""
        if not prompt or not prompt.strip():
            raise self._reject(stage_id, "Please enter a prompt.")
        if primary is None and not generative:
            raise self._reject(stage_id, "Please upload an image.")

        images: List[ImagePayload] = []
        if not generative:
            try:
                images.append(_payload(primary))
                if secondary is not None:
                    images.append(_payload(secondary))
            except ValidationError as exc:
                raise self._reject(stage_id, str(exc)) from exc

        filename = source_filename or (primary.name if primary is not None else None)
        self._begin(stage_id)
        logger.info("Stage %s started", stage_id)
        try:
            result = self._generate(
                images,
                prompt,
                mask_base64=mask_base64,
                source_filename=filename,
                generative=generative,
            )
        except Exception as exc:
            logger.error("Stage %s failed: %s", stage_id, exc)
            self._finish(stage_id, [], str(exc))
            raise
        self._finish(stage_id, [result])
        logger.info("Stage %s succeeded (record %s)", stage_id, result.record_id)
        return result

    def run_generative(self, stage_id: str, transformation_key: str, prompt: str) -> PipelineStageResult:
        """Text-to-image run; no input image is involved."""
        filename = f"generated-{transformation_key}-{int(time.time() * 1000)}.png"
        return self.run_stage(stage_id, None, None, prompt, source_filename=filename, generative=True)

    def run_style_fan_out(
        self,
        stage_id: str,
        input_image: Optional[InputItem],
        selected_styles: Iterable[str],
        custom_location: Optional[str] = None,
    ) -> List[PipelineStageResult]:
        """Run the input through each selected style, one after another.

        A failing style is logged and recorded; the remaining styles still run.
        """
        if input_image is None:
            raise self._reject(stage_id, "Please upload an image.")
        try:
            presets = self.styles.select(selected_styles)
        except KeyError as exc:
            raise self._reject(stage_id, str(exc)) from exc
        if not presets:
            raise self._reject(stage_id, "Please select at least one style.")

        self._begin(stage_id)
        results: List[PipelineStageResult] = []
        failures: List[str] = []
        try:
            for preset in presets:
                filename = sanitize_filename(f"step4_style_{preset.key}_{input_image.name}")
                try:
                    result = self._generate(
                        [_payload(input_image)],
                        apply_location(preset, custom_location),
                        source_filename=filename,
                    )
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Style %s failed in stage %s: %s", preset.key, stage_id, exc)
                    failures.append(f"{preset.key}: {exc}")
                    continue
                results.append(result)
        finally:
            self._finish(stage_id, results, "; ".join(failures) or None)
        return results

    def chain_automated(
        self,
        stages: Sequence[str],
        seed_image: InputItem,
    ) -> Optional[PipelineStageResult]:
        """Run registered stages in order, feeding each output into the next.

        Stops at the first failing stage and returns the last success, if any.
        The failure itself is only visible through that stage's state.
        """
        definitions = [self.stage_definition(stage_id) for stage_id in stages]
        current = seed_image
        last: Optional[PipelineStageResult] = None
        for definition in definitions:
            try:
                result = self.run_stage(
                    definition.stage_id,
                    current,
                    definition.secondary,
                    definition.prompt,
                    source_filename=sanitize_filename(definition.filename) if definition.filename else None,
                )
            except Exception as exc:  # noqa: BLE001
                logger.warning("Chain stopped at stage %s: %s", definition.stage_id, exc)
                self.record_error(definition.stage_id, str(exc))
                break
            last = result
            current = result.as_input(f"{definition.stage_id}.png")
        return last

    def run_two_step(
        self,
        stage_id: str,
        source: Optional[InputItem],
        reference: Optional[InputItem],
        step_one_prompt: str,
        step_two_prompt: str,
    ) -> PipelineStageResult:
        """Produce an intermediate from ``source``, then the final image from it.

        ``reference`` is resized to the source's pixel size before step two.
        One record keeps both images: final as primary, intermediate as secondary.
        """
        if source is None:
            raise self._reject(stage_id, "Please upload an image.")
        if not step_one_prompt or not step_two_prompt:
            raise self._reject(stage_id, "Both step prompts are required.")

        self._begin(stage_id)
        logger.info("Two-step stage %s started", stage_id)
        try:
            step_one = self.gateway.edit_image([_payload(source)], step_one_prompt, None)
            if not step_one.image_url:
                raise GenerationFailed(TWO_STEP_FAILURE_MESSAGE)

            images = [ImagePayload.from_data_url(step_one.image_url)]
            if reference is not None:
                try:
                    resized = resize_image_to_match(reference.data_url, source.data_url)
                except (OSError, ValueError) as exc:
                    raise ValidationError(f"The reference image could not be read: {exc}") from exc
                images.append(ImagePayload.from_data_url(resized))

            result = self._generate(
                images,
                step_two_prompt,
                source_filename=source.name,
                secondary_image_url=step_one.image_url,
            )
        except Exception as exc:
            logger.error("Two-step stage %s failed: %s", stage_id, exc)
            self._finish(stage_id, [], str(exc))
            raise
        self._finish(stage_id, [result])
        return result

    def run_batch(
        self,
        stage_id: str,
        items: Sequence[InputItem],
        prompt: PromptSource,
    ) -> BatchResult:
        """Process each item as an independent single-image run, in order.

        An item counts as a success only once its record is saved.
        """
        if not items:
            raise self._reject(stage_id, "Please upload at least one image.")

        self._begin(stage_id)
        batch = BatchResult()
        try:
            for index, item in enumerate(items, start=1):
                logger.info("Batch %s: processing %d/%d (%s)", stage_id, index, len(items), item.name)
                try:
                    item_prompt = prompt() if callable(prompt) else prompt
                    if not item_prompt or not item_prompt.strip():
                        raise ValidationError("Please enter a prompt.")
                    result = self._generate([_payload(item)], item_prompt, source_filename=item.name)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Failed to process image %d (%s): %s", index, item.name, exc)
                    batch.fail_count += 1
                    batch.errors[item.name] = str(exc)
                    continue
                batch.results.append(result)
                if result.saved:
                    batch.success_count += 1
                else:
                    batch.fail_count += 1
                    batch.errors[item.name] = str(result.persistence_error)
        finally:
            summary = None
            if batch.fail_count:
                summary = f"{batch.fail_count} of {batch.total} items failed."
            self._finish(stage_id, batch.results, summary)
        return batch

    def run_video(
        self,
        stage_id: str,
        prompt: str,
        item: Optional[InputItem] = None,
        aspect_ratio: str = "16:9",
        on_progress: Optional[ProgressCallback] = None,
    ) -> VideoResult:
        """Generate a video, optionally from a starting image, and save it."""
        if not prompt or not prompt.strip():
            raise self._reject(stage_id, "Please enter a prompt.")

        self._begin(stage_id)
        try:
            video_blob = self.gateway.generate_video(
                prompt,
                _payload(item) if item is not None else None,
                aspect_ratio,
                on_progress,
            )
        except Exception as exc:
            logger.error("Video stage %s failed: %s", stage_id, exc)
            self._finish(stage_id, [], str(exc))
            raise

        result = VideoResult(video_blob=video_blob, source_filename=item.name if item else None)
        try:
            result.record_id = self.history.append(
                GenerationRecord(video_blob=video_blob, original_filename=result.source_filename)
            )
        except PersistenceError as exc:
            logger.error("Generated a video but could not save it to history: %s", exc)
            result.persistence_error = exc
        finally:
            with self._guard:
                state = self._states[stage_id]
                state.status = StageStatus.SUCCEEDED
                state.error = None

        if self.storage is not None:
            result.video_url = self.storage.materialize(video_blob, suffix=".mp4")
        return result
