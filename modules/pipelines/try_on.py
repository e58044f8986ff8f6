"""Virtual try-on auto-flow: three compositing steps and a style fan-out."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from modules.pipelines.affiliate import (
    AffiliateImageFetcher,
    AffiliateImport,
    FetchReport,
    default_affiliate_config,
    export_affiliate_config,
    load_affiliate_config,
)
from modules.pipelines.errors import NanoBananaryError
from modules.pipelines.orchestrator import (
    PipelineOrchestrator,
    PipelineStageResult,
    StageDefinition,
    StageState,
    StageStatus,
    sanitize_filename,
)
from modules.utils.image_utils import InputItem

logger = logging.getLogger(__name__)

STEP_CLOTHING = "step1"
STEP_BAG = "step2"
STEP_SHOES = "step3"
STEP_STYLES = "step4"
CHAINED_STEPS = (STEP_CLOTHING, STEP_BAG, STEP_SHOES)

ITEM_MODEL = "model"
ITEM_CLOTHING = "clothing"
ITEM_BAG = "bag"
ITEM_SHOES = "shoes"

DEFAULT_STEP_PROMPTS: Dict[str, str] = {
    STEP_CLOTHING: (
        "Replace the clothing of the character in image 1 with the apparel from image 2. "
        "Simultaneously, adjust the character's pose in image 1 to a more fitting and fashionable "
        "stance that best showcases the new garment, ensuring overall visual harmony and unity. "
        "The final output should embody a high-fashion editorial aesthetic."
    ),
    STEP_BAG: (
        "A stunning fashion model from the first image expertly showcasing the handbag from the "
        "second image, embodying high fashion and modern elegance. The model should hold or wear "
        "the item with an effortless, organic pose that seamlessly integrates the handbag into the "
        "model's overall flow and style."
    ),
    STEP_SHOES: (
        "Wear the shoes from the second image onto the model from the first image. The shoes "
        "should be worn naturally, matching the model's pose and the overall high-fashion "
        "aesthetic of the image."
    ),
}

_STEP_ITEMS = {STEP_CLOTHING: ITEM_CLOTHING, STEP_BAG: ITEM_BAG, STEP_SHOES: ITEM_SHOES}
_STEP_FILENAMES = {
    STEP_CLOTHING: "step1_try_on_{name}",
    STEP_BAG: "step2_add_bag_{name}",
    STEP_SHOES: "step3_add_shoes_{name}",
}
_MISSING_ITEM_MESSAGES = {
    ITEM_MODEL: "Please upload a model image.",
    ITEM_CLOTHING: "Please upload both the model and the clothing images.",
    ITEM_BAG: "Please upload a bag image.",
    ITEM_SHOES: "Please upload a shoes image.",
}


@dataclass
class TryOnInputs:
    """Uploaded catalog images plus optional per-step model overrides."""

    items: Dict[str, Optional[InputItem]] = field(
        default_factory=lambda: {ITEM_MODEL: None, ITEM_CLOTHING: None, ITEM_BAG: None, ITEM_SHOES: None}
    )
    step_models: Dict[str, Optional[InputItem]] = field(default_factory=dict)


class VirtualTryOnFlow:
    """Drive the try-on steps through a shared orchestrator."""

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        fetcher: Optional[AffiliateImageFetcher] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.inputs = TryOnInputs()
        self.prompts: Dict[str, str] = dict(DEFAULT_STEP_PROMPTS)
        self.affiliate: Dict[str, Dict[str, str]] = default_affiliate_config()
        self._fetcher = fetcher

    # Affiliate metadata ---------------------------------------------------
    def set_affiliate_field(self, item_key: str, field_name: str, value: str) -> None:
        entry = self.affiliate[item_key]
        if field_name not in entry:
            raise KeyError(f"Unknown field '{field_name}' for '{item_key}'")
        entry[field_name] = value

    def export_affiliate_config(self, target_dir: Path | str) -> Path:
        return export_affiliate_config(self.affiliate, target_dir)

    def import_affiliate_config(self, path: Path | str) -> AffiliateImport:
        """Replace metadata from a JSON file, clear images and results, then fetch.

        Images are fetched only when a clothing, bag or shoes URL is present.
        """
        report = load_affiliate_config(path)
        self._clear_images_and_results()
        self.affiliate = report.config
        if report.missing_fields:
            logger.info("Imported config is missing: %s", ", ".join(report.missing_fields))
        if report.type_error_fields:
            logger.warning("Imported config has non-string fields: %s", ", ".join(report.type_error_fields))
        if report.needs_fetch:
            report.fetch = self.fetch_affiliate_images()
        return report

    def fetch_affiliate_images(self) -> FetchReport:
        """Download the configured product images into the try-on inputs."""
        if self._fetcher is None:
            self._fetcher = AffiliateImageFetcher()
        report = self._fetcher.fetch_all(self.affiliate)
        for item_key, item in report.items.items():
            self.set_item(item_key, item)
        return report

    def clear_all(self) -> None:
        self.affiliate = default_affiliate_config()
        self._clear_images_and_results()
        self.inputs.step_models = {}

    def _clear_images_and_results(self) -> None:
        self.inputs.items = TryOnInputs().items
        for step in CHAINED_STEPS + (STEP_STYLES,):
            self.orchestrator.reset_stage(step)

    # Inputs ---------------------------------------------------------------
    def set_item(self, item_key: str, item: Optional[InputItem]) -> None:
        if item_key not in self.inputs.items:
            raise KeyError(f"Unknown try-on item '{item_key}'")
        self.inputs.items[item_key] = item

    def set_step_model(self, step: str, item: Optional[InputItem]) -> None:
        self.inputs.step_models[step] = item

    def set_prompt(self, step: str, prompt: str) -> None:
        if step not in DEFAULT_STEP_PROMPTS:
            raise KeyError(f"Step '{step}' has no editable prompt")
        self.prompts[step] = prompt

    def restore_prompt(self, step: str) -> str:
        self.prompts[step] = DEFAULT_STEP_PROMPTS[step]
        return self.prompts[step]

    def state(self, step: str) -> StageState:
        return self.orchestrator.stage_state(step)

    def _prompt_for(self, step: str) -> str:
        return self.prompts.get(step, "").strip() or DEFAULT_STEP_PROMPTS[step]

    def _model_for(self, step: str) -> Optional[InputItem]:
        override = self.inputs.step_models.get(step)
        if override is not None:
            return override
        if step == STEP_CLOTHING:
            return self.inputs.items[ITEM_MODEL]
        return None

    def _definition(self, step: str) -> Optional[StageDefinition]:
        item_key = _STEP_ITEMS[step]
        item = self.inputs.items[item_key]
        if item is None:
            self.orchestrator.record_error(step, _MISSING_ITEM_MESSAGES[item_key])
            return None
        return StageDefinition(
            stage_id=step,
            prompt=self._prompt_for(step),
            secondary=item,
            filename=sanitize_filename(_STEP_FILENAMES[step].format(name=item.name)),
        )

    # Steps ----------------------------------------------------------------
    def run_step(self, step: str, model_input: Optional[InputItem] = None) -> Optional[PipelineStageResult]:
        """Run one of the compositing steps; failures end up in the step state."""
        definition = self._definition(step)
        model = model_input or self._model_for(step)
        if definition is None:
            return None
        if model is None:
            self.orchestrator.record_error(step, _MISSING_ITEM_MESSAGES[ITEM_MODEL])
            return None

        self.orchestrator.register_stage(definition)
        try:
            result = self.orchestrator.run_stage(
                step,
                model,
                definition.secondary,
                definition.prompt,
                source_filename=definition.filename,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Try-on %s failed: %s", step, exc)
            return None
        self._feed_next(step, result)
        return result

    def run_styles(
        self,
        selected_styles: Iterable[str],
        custom_location: Optional[str] = None,
        model_input: Optional[InputItem] = None,
    ) -> List[PipelineStageResult]:
        model = model_input or self.inputs.step_models.get(STEP_STYLES)
        try:
            return self.orchestrator.run_style_fan_out(STEP_STYLES, model, selected_styles, custom_location)
        except NanoBananaryError as exc:
            logger.warning("Try-on style fan-out rejected: %s", exc)
            return []

    def _feed_next(self, step: str, result: PipelineStageResult) -> None:
        order = CHAINED_STEPS + (STEP_STYLES,)
        position = order.index(step)
        if position + 1 < len(order):
            self.set_step_model(order[position + 1], result.as_input(f"{step}.png"))

    # Automation -----------------------------------------------------------
    def automate_first_three(self) -> Optional[PipelineStageResult]:
        """Chain steps 1-3; each output becomes the next step's model image."""
        seed = self._model_for(STEP_CLOTHING)
        if seed is None or self.inputs.items[ITEM_CLOTHING] is None:
            self.orchestrator.record_error(STEP_CLOTHING, _MISSING_ITEM_MESSAGES[ITEM_CLOTHING])
            return None

        stages: List[str] = []
        for step in CHAINED_STEPS:
            definition = self._definition(step)
            if definition is None:
                break
            self.orchestrator.register_stage(definition)
            stages.append(step)

        last = self.orchestrator.chain_automated(stages, seed)
        for step in stages:
            state = self.orchestrator.stage_state(step)
            if state.status is not StageStatus.SUCCEEDED or state.result is None:
                break
            self._feed_next(step, state.result)

        if last is None or len(stages) < len(CHAINED_STEPS):
            return None
        # A chain that stopped early returns an earlier step's result.
        if self.orchestrator.stage_state(STEP_SHOES).result is not last:
            return None
        return last

    def full_automate(
        self,
        selected_styles: Iterable[str],
        custom_location: Optional[str] = None,
    ) -> List[PipelineStageResult]:
        """Chain steps 1-3, then fan the final look out over the selected styles."""
        final = self.automate_first_three()
        if final is None:
            return []
        return self.run_styles(selected_styles, custom_location, final.as_input(f"{STEP_SHOES}.png"))
