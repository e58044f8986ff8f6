"""Prompt templating for option-driven transformations."""

from __future__ import annotations

import random
from typing import Iterable, Mapping, Optional, Tuple

from modules.prompts.catalog import CUSTOM_PROMPT, PromptOption, TransformationSpec

RANDOM_CHOICE = "random"


def fill_template(template: str, substitutions: Iterable[Tuple[str, str]]) -> str:
    """Replace every ``{placeholder}`` occurrence with its resolved value.

    Substitutions are applied in order; placeholders without a substitution
    are left untouched.
    """
    result = template
    for placeholder, value in substitutions:
        result = result.replace(f"{{{placeholder}}}", value)
    return result


def resolve_option(
    option: PromptOption,
    selected: Optional[str],
    rng: Optional[random.Random] = None,
) -> str:
    """Resolve the text inserted for ``option``.

    An unset selection, or ``"random"``, picks uniformly among the declared
    values. A selection that matches no declared value falls back to the first
    one.
    """
    if not option.values:
        raise ValueError(f"Prompt option '{option.key}' declares no values.")
    if not selected or selected == RANDOM_CHOICE:
        chooser = rng or random
        return chooser.choice(option.values).value
    for value in option.values:
        if value.value == selected:
            return value.value
    return option.values[0].value


def build_prompt(
    spec: TransformationSpec,
    options: Optional[Mapping[str, str]] = None,
    custom_prompt: str = "",
    rng: Optional[random.Random] = None,
) -> str:
    """Return the final prompt for ``spec`` given the user's choices."""
    if spec.prompt == CUSTOM_PROMPT:
        return custom_prompt
    if not spec.prompt_template or not spec.options:
        return spec.prompt or ""

    chosen = options or {}
    substitutions = [
        (option.key, resolve_option(option, chosen.get(option.key), rng))
        for option in spec.options
    ]
    return fill_template(spec.prompt_template, substitutions)
