"""Style preset management for the stylization fan-out."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

LOCATION_PLACEHOLDER = "**[LOCATION]**"
DEFAULT_LOCATION = "a dramatic location"
CUSTOM_STYLE_KEY = "custom"

_EDITORIAL_PORTRAIT = (
    "Reimagine the photo as a Fashion editorial cover shoot. Create an ultra-realistic portrait "
    "with impeccable detail in the skin texture and fabric. {setting}, the subject should hold a "
    "powerful, dramatic pose. Illuminate the scene with moody, cinematic lighting that sculpts the "
    "features and casts deep, artistic shadows, creating a high-fashion, atmospheric feel."
)
_EDITORIAL_COVER = (
    "Capture the essence of a high-fashion editorial cover: An ultra-realistic portrait demanding "
    "impeccable fidelity in skin texture and fabric detail. Against the backdrop of {backdrop}, the "
    "subject strikes a dynamic, commanding pose. The scene must be dramatically sculpted by moody, "
    "cinematic illumination, emphasizing deep, artistic shadows and chiseled features"
)


@dataclass(slots=True, frozen=True)
class StylePreset:
    """A named scene prompt applied to a finished try-on image."""

    key: str
    label: str
    prompt: str
    enabled_by_default: bool = True


TRY_ON_STYLES: tuple[StylePreset, ...] = (
    StylePreset("tShow", "T-Show", _EDITORIAL_PORTRAIT.format(setting="In T-show")),
    StylePreset("street", "Street", _EDITORIAL_PORTRAIT.format(setting="In the Street")),
    StylePreset(
        "party",
        "Party",
        _EDITORIAL_PORTRAIT.format(setting="In an exclusive, candlelit grand ballroom/lounge"),
    ),
    StylePreset("vintageBuilding", "Vintage building", _EDITORIAL_COVER.format(backdrop="a grand vintage edifice")),
    StylePreset(
        "nightClub",
        "Night club",
        "Reimagine the photo inside a high-energy night club. Create an ultra-realistic portrait with "
        "impeccable skin and fabric detail. The scene features a live DJ booth, pulsing neon lights, "
        "laser beams, and a lively dancing crowd. The subject strikes a dynamic, powerful pose. "
        "Illuminate the scene with moody, cinematic lighting and vibrant color gels, casting deep, "
        "artistic shadows for a high-fashion, electric atmosphere.",
    ),
    StylePreset(
        CUSTOM_STYLE_KEY,
        "Customize",
        _EDITORIAL_COVER.format(backdrop=LOCATION_PLACEHOLDER)
        + ", forging an atmosphere of opulent glamour perfect for a spectacular Ball and Party night.",
        enabled_by_default=False,
    ),
)


def apply_location(preset: StylePreset, location: Optional[str]) -> str:
    """Return the preset prompt with the custom location filled in."""
    if preset.key != CUSTOM_STYLE_KEY:
        return preset.prompt
    return preset.prompt.replace(LOCATION_PLACEHOLDER, (location or "").strip() or DEFAULT_LOCATION)


class StylePresetRegistry:
    """In-memory registry of style presets, kept in declaration order."""

    def __init__(self, presets: Iterable[StylePreset] = ()) -> None:
        self._presets: Dict[str, StylePreset] = {}
        for preset in presets:
            self.add(preset)

    def load_from_file(self, path: Path) -> None:
        """Load presets from a JSON file."""
        if not path.exists():
            return
        with path.open("r", encoding="utf-8") as fp:
            data = json.load(fp)
        for entry in data:
            preset = StylePreset(
                key=entry["key"],
                label=entry.get("label", entry["key"]),
                prompt=entry["prompt"],
                enabled_by_default=bool(entry.get("enabled_by_default", True)),
            )
            self.add(preset)

    def add(self, preset: StylePreset) -> None:
        """Register a new style preset."""
        self._presets[preset.key] = preset

    def list_presets(self) -> List[StylePreset]:
        """Return all registered presets."""
        return list(self._presets.values())

    def default_selection(self) -> set[str]:
        return {preset.key for preset in self._presets.values() if preset.enabled_by_default}

    def get(self, key: str) -> StylePreset:
        """Retrieve a preset by key."""
        try:
            return self._presets[key]
        except KeyError as exc:
            raise KeyError(f"Style preset '{key}' not found") from exc

    def select(self, keys: Iterable[str]) -> List[StylePreset]:
        """Return the presets named in ``keys`` in registry order."""
        wanted = set(keys)
        unknown = wanted - set(self._presets)
        if unknown:
            raise KeyError(f"Unknown style presets: {', '.join(sorted(unknown))}")
        return [preset for preset in self._presets.values() if preset.key in wanted]


def default_registry() -> StylePresetRegistry:
    return StylePresetRegistry(TRY_ON_STYLES)
