"""Prompt catalog, templating and style preset tests."""

from __future__ import annotations

import json
import random

import pytest

from modules.prompts.catalog import (
    CUSTOM_PROMPT,
    OptionValue,
    PromptOption,
    TransformationRegistry,
    TransformationSpec,
)
from modules.prompts.style_presets import (
    CUSTOM_STYLE_KEY,
    StylePreset,
    StylePresetRegistry,
    apply_location,
    default_registry,
)
from modules.prompts.templating import RANDOM_CHOICE, build_prompt, fill_template, resolve_option

SKY = PromptOption(
    key="sky",
    title="Sky",
    values=(OptionValue("a blood moon", "Blood moon"), OptionValue("a stormy sky", "Storm")),
)
TEMPLATED = TransformationSpec(
    key="scene",
    title="Scene",
    prompt_template="Under {sky}, and again {sky}.",
    options=(SKY,),
)


def test_fill_template_replaces_every_occurrence():
    assert fill_template("{a} and {a} with {b}", [("a", "x")]) == "x and x with {b}"


def test_resolve_option_known_value():
    assert resolve_option(SKY, "a stormy sky") == "a stormy sky"


def test_resolve_option_unknown_value_falls_back_to_first():
    assert resolve_option(SKY, "a green sky") == "a blood moon"


@pytest.mark.parametrize("selected", [None, "", RANDOM_CHOICE])
def test_resolve_option_random_picks_declared_value(selected):
    values = {resolve_option(SKY, selected, random.Random(seed)) for seed in range(20)}
    assert values <= {"a blood moon", "a stormy sky"}
    assert len(values) == 2


def test_build_prompt_uses_template_and_options():
    assert build_prompt(TEMPLATED, {"sky": "a stormy sky"}) == "Under a stormy sky, and again a stormy sky."


def test_build_prompt_custom_returns_user_text():
    spec = TransformationSpec(key="customPrompt", title="Custom", prompt=CUSTOM_PROMPT)
    assert build_prompt(spec, custom_prompt="paint it gold") == "paint it gold"


def test_build_prompt_plain_prompt():
    spec = TransformationSpec(key="plain", title="Plain", prompt="make it sepia")
    assert build_prompt(spec, {"ignored": "x"}) == "make it sepia"


def test_catalog_keys_are_unique_and_categories_expand():
    registry = TransformationRegistry()
    flat_keys = [spec.key for spec in registry.flatten()]

    assert len(flat_keys) == len(set(flat_keys))
    category = registry.get("category_effects")
    assert category.is_category
    assert len(category.items) > 50
    assert registry.get(category.items[0].key) is category.items[0]


def test_catalog_flags_match_behaviour():
    registry = TransformationRegistry()

    assert registry.get("customPrompt").is_custom
    assert registry.get("virtualTryOnAuto").is_auto_flow
    assert registry.get("colorPalette").is_two_step
    assert registry.get("colorPalette").step_two_prompt
    assert registry.get("videoGeneration").is_video
    assert not registry.get("pose").supports_batch
    assert registry.get("halloweenScene").options


def test_templated_catalog_entries_fill_every_placeholder():
    registry = TransformationRegistry()
    for spec in registry.flatten():
        if spec.prompt_template:
            prompt = build_prompt(spec, rng=random.Random(1))
            assert "{" not in prompt, spec.key


def test_registry_loads_extra_entries(tmp_path):
    path = tmp_path / "transformations.json"
    path.write_text(
        json.dumps(
            [
                {
                    "key": "neon",
                    "title": "Neon",
                    "prompt_template": "Add {color} neon",
                    "options": [{"key": "color", "title": "Color", "values": ["pink", "green"]}],
                }
            ]
        ),
        encoding="utf-8",
    )
    registry = TransformationRegistry()
    registry.load_from_file(path)

    spec = registry.get("neon")
    assert registry.keys()[-1] == "neon"
    assert build_prompt(spec, {"color": "green"}) == "Add green neon"


def test_registry_unknown_key():
    with pytest.raises(KeyError):
        TransformationRegistry().get("does-not-exist")


def test_style_registry_default_selection_excludes_custom():
    registry = default_registry()
    selection = registry.default_selection()

    assert CUSTOM_STYLE_KEY not in selection
    assert {"tShow", "street", "party", "vintageBuilding", "nightClub"} == selection


def test_style_select_keeps_registry_order():
    registry = default_registry()
    assert [preset.key for preset in registry.select(["party", "tShow"])] == ["tShow", "party"]
    with pytest.raises(KeyError):
        registry.select(["disco"])


def test_apply_location():
    custom = default_registry().get(CUSTOM_STYLE_KEY)
    plain = StylePreset("plain", "Plain", "a plain prompt")

    assert "a moonlit harbor" in apply_location(custom, "a moonlit harbor")
    assert "a dramatic location" in apply_location(custom, None)
    assert apply_location(plain, "ignored") == "a plain prompt"


def test_style_registry_loads_from_file(tmp_path):
    path = tmp_path / "styles.json"
    path.write_text(json.dumps([{"key": "beach", "prompt": "on a beach"}]), encoding="utf-8")
    registry = StylePresetRegistry()
    registry.load_from_file(path)

    preset = registry.get("beach")
    assert preset.label == "beach"
    assert preset.enabled_by_default
