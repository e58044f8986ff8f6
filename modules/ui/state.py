"""Session-scoped state for the transformation workspace."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from modules.pipelines.orchestrator import BatchResult
from modules.prompts.catalog import TransformationSpec
from modules.services.history_service import GenerationRecord
from modules.utils.image_utils import InputItem

logger = logging.getLogger(__name__)


def merge_transformation_order(
    saved_keys: Optional[Sequence[str]],
    canonical: Sequence[TransformationSpec],
) -> List[TransformationSpec]:
    """Apply a persisted key order to the canonical catalog.

    Saved keys come first in their saved order; keys no longer in the catalog
    are dropped and catalog entries missing from the saved order are appended
    in canonical order.
    """
    if not saved_keys:
        return list(canonical)
    by_key = {spec.key: spec for spec in canonical}
    ordered: List[TransformationSpec] = []
    seen: set[str] = set()
    for key in saved_keys:
        spec = by_key.get(key)
        if spec is None or key in seen:
            continue
        ordered.append(spec)
        seen.add(key)
    ordered.extend(spec for spec in canonical if spec.key not in seen)
    return ordered


class TransformationOrderStore:
    """JSON file holding the user's transformation order."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Optional[List[str]]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("Failed to load transformation order from %s: %s", self.path, exc)
            return None
        if not isinstance(data, list) or not all(isinstance(key, str) for key in data):
            logger.error("Ignoring malformed transformation order in %s", self.path)
            return None
        return data

    def save(self, keys: Iterable[str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(list(keys), ensure_ascii=False), encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to save transformation order to %s: %s", self.path, exc)


@dataclass
class SessionState:
    """Everything the workspace remembers between user actions."""

    transformations: List[TransformationSpec] = field(default_factory=list)
    selected: Optional[TransformationSpec] = None
    input_items: List[InputItem] = field(default_factory=list)
    secondary_item: Optional[InputItem] = None
    mask_data_url: Optional[str] = None
    custom_prompt: str = ""
    prompt_options: Dict[str, str] = field(default_factory=dict)
    aspect_ratio: str = "16:9"
    last_result: Any = None
    batch_result: Optional[BatchResult] = None
    history: List[GenerationRecord] = field(default_factory=list)
    error: Optional[str] = None

    def transformation_keys(self) -> List[str]:
        return [spec.key for spec in self.transformations]

    def move_transformation(self, key: str, new_index: int) -> None:
        """Move ``key`` to ``new_index`` (clamped to the list bounds)."""
        keys = self.transformation_keys()
        if key not in keys:
            raise KeyError(f"Transformation '{key}' not found")
        spec = self.transformations.pop(keys.index(key))
        index = max(0, min(new_index, len(self.transformations)))
        self.transformations.insert(index, spec)

    def clear_outputs(self) -> None:
        self.last_result = None
        self.batch_result = None
        self.error = None

    def clear_inputs(self) -> None:
        self.input_items = []
        self.mask_data_url = None
        self.clear_outputs()

    def reset(self) -> None:
        self.selected = None
        self.input_items = []
        self.secondary_item = None
        self.mask_data_url = None
        self.custom_prompt = ""
        self.prompt_options = {}
        self.clear_outputs()
