"""Transformation catalog: declarative descriptors for every effect."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

CUSTOM_PROMPT = "CUSTOM"


@dataclass(slots=True, frozen=True)
class OptionValue:
    """A selectable value; ``value`` is the text inserted into the prompt."""

    value: str
    label: str = ""


@dataclass(slots=True, frozen=True)
class PromptOption:
    """A named slot of a prompt template and the values it accepts."""

    key: str
    title: str
    values: Tuple[OptionValue, ...]


@dataclass(slots=True, frozen=True)
class TransformationSpec:
    """Immutable catalog entry describing one transformation."""

    key: str
    title: str
    emoji: str = ""
    prompt: Optional[str] = None
    description: str = ""
    prompt_template: Optional[str] = None
    options: Tuple[PromptOption, ...] = ()
    step_two_prompt: Optional[str] = None
    items: Tuple["TransformationSpec", ...] = ()
    is_multi_image: bool = False
    is_secondary_optional: bool = False
    is_two_step: bool = False
    is_video: bool = False
    is_generative: bool = False
    supports_batch: bool = True
    is_auto_flow: bool = False

    @property
    def is_category(self) -> bool:
        return bool(self.items)

    @property
    def is_custom(self) -> bool:
        return self.prompt == CUSTOM_PROMPT


def _values(*pairs: Tuple[str, str]) -> Tuple[OptionValue, ...]:
    return tuple(OptionValue(value=value, label=label) for value, label in pairs)


def _labelled(*values: str) -> Tuple[OptionValue, ...]:
    return tuple(OptionValue(value=value, label=value) for value in values)


_HALLOWEEN_TEMPLATE = (
    "Isolate the foreground subject from the input image and place it in a completely new, "
    "atmospheric Halloween background. The new background should feature {sky}, a {structure}, "
    "and key elements like {elements1} and {elements2}. The scene should have textures of "
    "{materials}. The mood should be enhanced by {effects}. Style: strong depth of field, slight "
    "bokeh in foreground, clear mid-ground, misty background. Colors: strong contrast of warm "
    "orange and cool blue/purple. Lighting: dramatic, side backlighting and rim light. "
    "Composition: full and dynamic. Generate a high-definition, detailed image. Ensure the "
    "foreground subject is seamlessly integrated. IMPORTANT: The final output image must have a "
    "portrait aspect ratio of 2:3, regardless of the input image's dimensions."
)

_HALLOWEEN_OPTIONS = (
    PromptOption(
        "sky",
        "Sky",
        _labelled(
            "a full moon",
            "a blood moon",
            "flowing thin clouds",
            "fine volumetric light rays",
            "distant lightning",
            "a cold, starry sky",
            "a backlight glow",
        ),
    ),
    PromptOption(
        "structure",
        "Structure",
        _labelled(
            "Gothic castle",
            "spire and archway",
            "extending stone path",
            "Victorian alley",
            "cemetery with fences",
            "clearing in a forest",
            "indoor fireplace setting",
            "pumpkin patch",
            "wharf and pier",
            "entrance to an abandoned amusement park",
        ),
    ),
    PromptOption(
        "elements1",
        "Key elements",
        _labelled(
            "a group of carved jack-o'-lanterns",
            "a swarm of bats",
            "little ghosts",
            "a black cat",
            "skulls and candlesticks",
            "spiders and cobwebs",
        ),
    ),
    PromptOption(
        "elements2",
        "More elements",
        _labelled(
            "tombstones and crosses",
            "banners and string lights",
            "a scarecrow",
            "spellbooks and potion bottles",
            "a witch's hat and broom",
            "scattered candy",
        ),
    ),
    PromptOption(
        "materials",
        "Materials",
        _labelled(
            "old wood",
            "rough stone",
            "dark metal",
            "torn cloth drapes",
            "fallen leaves on the ground",
            "slight reflection from dampness",
            "mirror-like wet ground",
            "ivy vines",
        ),
    ),
    PromptOption(
        "effects",
        "Effects",
        _labelled(
            "low-lying fog",
            "floating dust particles",
            "reflecting light from fine rain",
            "flickering firelight",
            "out-of-focus bokeh",
            "cool-colored glow on the edges",
        ),
    ),
)

_BACKGROUND_OPTIONS = (
    PromptOption(
        "style",
        "Style",
        _values(
            ("Y2K aesthetic", "Y2K"),
            ("surreal dreamscape", "Dreamscape"),
            ("bustling cyberpunk city at night", "Cyberpunk"),
            ("enchanted forest with glowing flora", "Enchanted forest"),
            ("haunted Victorian mansion", "Haunted mansion"),
            ("serene tropical beach at sunset", "Tropical beach"),
            ("minimalist brutalist architecture", "Brutalist"),
            ("cozy, cluttered artist loft", "Artist loft"),
            ("post-apocalyptic wasteland", "Post-apocalyptic"),
            ("grand, opulent ballroom", "Ballroom"),
            ("spooky Halloween theme", "Halloween"),
        ),
    ),
    PromptOption(
        "atmosphere",
        "Atmosphere",
        _values(
            ("vibrant and energetic", "Vibrant"),
            ("dark and moody", "Moody"),
            ("dreamy and ethereal", "Dreamy"),
            ("nostalgic and retro", "Nostalgic"),
            ("mystical and magical", "Mystical"),
            ("calm and peaceful", "Calm"),
            ("tense and suspenseful", "Tense"),
            ("joyful and celebratory", "Joyful"),
            ("lonely and desolate", "Lonely"),
            ("futuristic and high-tech", "Futuristic"),
        ),
    ),
)

_SIMPLE_EFFECTS: Tuple[Tuple[str, str, str, str], ...] = (
    ("figurine", "Figurine", "🧍",
     "turn this photo into a character figure. Behind it, place a box with the character’s image "
     "printed on it, and a computer showing the Blender modeling process on its screen. In front of "
     "the box, add a round plastic base with the character figure standing on it. set the scene "
     "indoors if possible"),
    ("funko", "Funko Pop", "📦", "Transform the person into a Funko Pop figure, shown inside and next to its packaging."),
    ("lego", "LEGO", "🧱", "Transform the person into a LEGO minifigure, inside its packaging box."),
    ("crochet", "Crochet doll", "🧶",
     "Transform the subject into a handmade crocheted yarn doll with a cute, chibi-style appearance."),
    ("cosplay", "Cosplay", "🎭",
     "Generate a highly detailed, realistic photo of a person cosplaying the character in this "
     "illustration. Replicate the pose, expression, and framing."),
    ("plushie", "Plushie", "🧸", "Turn the person in this photo into a cute, soft plushie doll."),
    ("keychain", "Keychain", "🔑", "Turn the subject into a cute acrylic keychain, shown attached to a bag."),
    ("hdEnhance", "HD enhance", "🔍", "Enhance this image to high resolution, improving sharpness and clarity."),
    ("photorealistic", "Photorealistic", "🪄", "Turn this illustration into a photorealistic version."),
    ("fashion", "Fashion portrait", "📸",
     "Transform the photo into a stylized, ultra-realistic fashion magazine portrait with cinematic lighting."),
    ("hyperrealistic", "Hyperrealistic", "✨",
     "Generate a hyper-realistic, fashion-style photo with strong, direct flash lighting, grainy "
     "texture, and a cool, confident pose."),
    ("architecture", "Architecture model", "🏗️",
     "Convert this photo of a building into a miniature architecture model, placed on a cardstock in "
     "an indoor setting. Show a computer with modeling software in the background."),
    ("productRender", "Product render", "💡",
     "Turn this product sketch into a photorealistic 3D render with studio lighting."),
    ("sodaCan", "Soda can", "🥤",
     "Design a soda can using this image as the main graphic, and show it in a professional product shot."),
    ("industrialDesign", "Industrial design", "🛋️",
     "Turn this industrial design sketch into a realistic product photo, rendered with light brown "
     "leather and displayed in a minimalist museum setting."),
    ("iphoneWallpaper", "iPhone wallpaper", "📱",
     "Turn the image into an iPhone lock screen wallpaper effect, with the phone's time (01:16), date "
     "(Sunday, September 16), and status bar information (battery, signal, etc.), with the flashlight "
     "and camera buttons at the bottom, overlaid on the image. The original image should be adapted "
     "to a vertical composition that fits a phone screen. The phone is placed on a solid color "
     "background of the same color scheme."),
)

_TRAILING_EFFECTS: Tuple[Tuple[str, str, str, str], ...] = (
    ("screen3d", "3D screen", "📺",
     "For an image with a screen, add content that appears to be glasses-free 3D, popping out of the screen."),
    ("makeup", "Makeup analysis", "💄",
     "Analyze the makeup in this photo and suggest improvements by drawing with a red pen."),
)

_ARTISTIC_EFFECTS: Tuple[Tuple[str, str, str, str], ...] = (
    ("pixelArt", "Pixel Art", "👾", "Redraw the image in a retro 8-bit pixel art style."),
    ("watercolor", "Watercolor", "🖌️", "Transform the image into a soft and vibrant watercolor painting."),
    ("popArt", "Pop Art", "🎨", "Reimagine the image in the style of Andy Warhol's pop art, with bold colors and screen-print effects."),
    ("comicBook", "Comic Book", "💥", "Convert the image into a classic comic book panel with halftones, bold outlines, and action text."),
    ("claymation", "Claymation", "🗿", "Recreate the image as a charming stop-motion claymation scene."),
    ("ukiyoE", "Ukiyo E", "🌊", "Redraw the image in the style of a traditional Japanese Ukiyo-e woodblock print."),
    ("stainedGlass", "Stained Glass", "🪟", "Transform the image into a vibrant stained glass window with dark lead lines."),
    ("origami", "Origami", "🦢", "Reconstruct the subject of the image using folded paper in an origami style."),
    ("neonGlow", "Neon Glow", "💡", "Outline the subject in bright, glowing neon lights against a dark background."),
    ("doodleArt", "Doodle Art", "✏️", "Overlay the image with playful, hand-drawn doodle-style illustrations."),
    ("vintagePhoto", "Vintage Photo", "📜", "Give the image an aged, sepia-toned vintage photograph look from the early 20th century."),
    ("blueprintSketch", "Blueprint Sketch", "📐", "Convert the image into a technical blueprint-style architectural drawing."),
    ("glitchArt", "Glitch Art", "📉", "Apply a digital glitch effect with datamoshing, pixel sorting, and RGB shifts."),
    ("doubleExposure", "Double Exposure", "🏞️", "Create a double exposure effect, blending the image with a nature scene like a forest or a mountain range."),
    ("hologram", "Hologram", "🌐", "Project the subject as a futuristic, glowing blue hologram."),
    ("lowPoly", "Low Poly", "🔺", "Reconstruct the image using a low-polygon geometric mesh."),
    ("charcoalSketch", "Charcoal Sketch", "✍🏽", "Redraw the image as a dramatic, high-contrast charcoal sketch on textured paper."),
    ("impressionism", "Impressionism", "👨‍🎨", "Repaint the image in the style of an Impressionist masterpiece, with visible brushstrokes and a focus on light."),
    ("cubism", "Cubism", "🧊", "Deconstruct and reassemble the subject in the abstract, geometric style of Cubism."),
    ("steampunk", "Steampunk", "⚙️", "Reimagine the subject with steampunk aesthetics, featuring gears, brass, and Victorian-era technology."),
    ("fantasyArt", "Fantasy Art", "🐉", "Transform the image into an epic fantasy-style painting, with magical elements and dramatic lighting."),
    ("graffiti", "Graffiti", "🎨", "Spray-paint the image as vibrant graffiti on a brick wall."),
    ("minimalistLineArt", "Minimalist Line Art", "〰️", "Reduce the image to a single, continuous, minimalist line drawing."),
    ("storybook", "Storybook", "📖", "Redraw the image in the style of a whimsical children's storybook illustration."),
    ("thermal", "Thermal", "🌡️", "Apply a thermal imaging effect with a heat map color palette."),
    ("risograph", "Risograph", "📠", "Simulate a risograph print effect with grainy textures and limited, overlapping color layers."),
    ("crossStitch", "Cross Stitch", "🧵", "Convert the image into a textured, handmade cross-stitch pattern."),
    ("tattoo", "Tattoo", "🖋️", "Redesign the subject as a classic American traditional style tattoo."),
    ("psychedelic", "Psychedelic", "🌀", "Apply a vibrant, swirling, psychedelic art style from the 1960s."),
    ("gothic", "Gothic", "🏰", "Reimagine the scene with a dark, gothic art style, featuring dramatic shadows and architecture."),
    ("halloween", "Halloween", "🎃", "Transform the image to have a spooky Halloween theme, with pumpkins, bats, and a dark, eerie atmosphere."),
    ("tribal", "Tribal", "🗿", "Redraw the subject using patterns and motifs from traditional tribal art."),
    ("dotPainting", "Dot Painting", "🎨", "Recreate the image using the dot painting technique of Aboriginal art."),
    ("chalk", "Chalk", "🖍️", "Draw the image as a colorful chalk illustration on a sidewalk."),
    ("sandArt", "Sand Art", "🏜️", "Recreate the image as if it were made from colored sand."),
    ("mosaic", "Mosaic", "💠", "Transform the image into a mosaic made of small ceramic tiles."),
    ("paperQuilling", "Paper Quilling", "📜", "Reconstruct the subject using the art of paper quilling, with rolled and shaped strips of paper."),
    ("woodCarving", "Wood Carving", "🪵", "Recreate the subject as a detailed wood carving."),
    ("iceSculpture", "Ice Sculpture", "🧊", "Transform the subject into a translucent, detailed ice sculpture."),
    ("bronzeStatue", "Bronze Statue", "🗿", "Turn the subject into a weathered bronze statue on a pedestal."),
    ("galaxy", "Galaxy", "🌌", "Blend the image with a vibrant nebula and starry galaxy background."),
    ("fire", "Fire", "🔥", "Reimagine the subject as if it were formed from roaring flames."),
    ("water", "Water", "💧", "Reimagine the subject as if it were formed from flowing, liquid water."),
    ("smokeArt", "Smoke Art", "💨", "Create the subject from elegant, swirling wisps of smoke."),
    ("vectorArt", "Vector Art", "🎨", "Convert the photo into clean, scalable vector art with flat colors and sharp lines."),
    ("infrared", "Infrared", "📸", "Simulate an infrared photo effect with surreal colors and glowing foliage."),
    ("knitted", "Knitted", "🧶", "Recreate the image as a cozy, knitted wool pattern."),
    ("etching", "Etching", "✒️", "Redraw the image as a classic black and white etching or engraving."),
    ("diorama", "Diorama", "📦", "Turn the scene into a miniature 3D diorama inside a box."),
    ("cyberpunk", "Cyberpunk", "🤖", "Transform the scene into a futuristic cyberpunk city."),
    ("vanGogh", "Van Gogh", "🌌", "Reimagine the photo in the style of Van Gogh's 'Starry Night'."),
    ("lineArt", "Line Art", "✍🏻", "Turn the image into a clean, hand-drawn line art sketch."),
    ("paintingProcess", "Painting Process", "🖼️", "Generate a 4-panel grid showing the artistic process of creating this image, from sketch to final render."),
    ("markerSketch", "Marker Sketch", "🖊️", "Redraw the image in the style of a Copic marker sketch, often used in design."),
)


def _simple(entry: Tuple[str, str, str, str]) -> TransformationSpec:
    key, title, emoji, prompt = entry
    return TransformationSpec(key=key, title=title, emoji=emoji, prompt=prompt)


TRANSFORMATIONS: Tuple[TransformationSpec, ...] = (
    TransformationSpec(
        key="customPrompt",
        title="Custom prompt",
        emoji="✍️",
        prompt=CUSTOM_PROMPT,
        is_multi_image=True,
        is_secondary_optional=True,
        supports_batch=False,
    ),
    TransformationSpec(
        key="virtualTryOnAuto",
        title="Virtual try-on (auto)",
        emoji="🤖",
        supports_batch=False,
        is_auto_flow=True,
    ),
    *(_simple(entry) for entry in _SIMPLE_EFFECTS[:7]),
    _simple(_SIMPLE_EFFECTS[7]),
    TransformationSpec(
        key="pose",
        title="Pose transfer",
        emoji="💃",
        prompt=(
            "Apply the pose from the second image to the character in the first image. "
            "Render as a professional studio photograph."
        ),
        is_multi_image=True,
        supports_batch=False,
    ),
    *(_simple(entry) for entry in _SIMPLE_EFFECTS[8:]),
    TransformationSpec(
        key="colorPalette",
        title="Color palette swap",
        emoji="🎨",
        prompt="Turn this image into a clean, hand-drawn line art sketch.",
        step_two_prompt="Color the line art using the colors from the second image.",
        is_multi_image=True,
        is_two_step=True,
        supports_batch=False,
    ),
    TransformationSpec(
        key="videoGeneration",
        title="Video generation",
        emoji="🎬",
        prompt=CUSTOM_PROMPT,
        is_video=True,
        supports_batch=False,
    ),
    TransformationSpec(
        key="halloweenScene",
        title="Halloween scene",
        emoji="🎃",
        prompt_template=_HALLOWEEN_TEMPLATE,
        options=_HALLOWEEN_OPTIONS,
    ),
    TransformationSpec(
        key="isolate",
        title="Isolate subject",
        emoji="🎯",
        prompt=(
            "Isolate the person in the masked area and generate a high-definition photo of them "
            "against a neutral background."
        ),
        supports_batch=False,
    ),
    *(_simple(entry) for entry in _TRAILING_EFFECTS),
    TransformationSpec(
        key="background",
        title="Background swap",
        emoji="🪩",
        prompt_template="Change the background to a {style} in a {atmosphere} atmosphere.",
        options=_BACKGROUND_OPTIONS,
    ),
    _simple(
        (
            "addIllustration",
            "Add illustration",
            "🧑‍🎨",
            "Add a cute, cartoon-style illustrated couple into the real-world scene, sitting and talking.",
        )
    ),
    TransformationSpec(
        key="category_effects",
        title="50+ artistic effects",
        emoji="✨",
        items=tuple(_simple(entry) for entry in _ARTISTIC_EFFECTS),
    ),
)


def _option_from_dict(entry: Dict[str, Any]) -> PromptOption:
    values = []
    for raw in entry.get("values", []):
        if isinstance(raw, str):
            values.append(OptionValue(value=raw, label=raw))
        else:
            values.append(OptionValue(value=raw["value"], label=raw.get("label", raw["value"])))
    return PromptOption(key=entry["key"], title=entry.get("title", entry["key"]), values=tuple(values))


def spec_from_dict(entry: Dict[str, Any]) -> TransformationSpec:
    """Build a TransformationSpec from its JSON form."""
    return TransformationSpec(
        key=entry["key"],
        title=entry.get("title", entry["key"]),
        emoji=entry.get("emoji", ""),
        prompt=entry.get("prompt"),
        description=entry.get("description", ""),
        prompt_template=entry.get("prompt_template"),
        options=tuple(_option_from_dict(option) for option in entry.get("options", [])),
        step_two_prompt=entry.get("step_two_prompt"),
        items=tuple(spec_from_dict(item) for item in entry.get("items", [])),
        is_multi_image=bool(entry.get("is_multi_image", False)),
        is_secondary_optional=bool(entry.get("is_secondary_optional", False)),
        is_two_step=bool(entry.get("is_two_step", False)),
        is_video=bool(entry.get("is_video", False)),
        is_generative=bool(entry.get("is_generative", False)),
        supports_batch=bool(entry.get("supports_batch", True)),
        is_auto_flow=bool(entry.get("is_auto_flow", False)),
    )


class TransformationRegistry:
    """Keyed access to the canonical catalog plus any user-supplied entries."""

    def __init__(self, specs: Iterable[TransformationSpec] = TRANSFORMATIONS) -> None:
        self._specs: Dict[str, TransformationSpec] = {}
        for spec in specs:
            self.add(spec)

    def load_from_file(self, path: Path) -> None:
        """Load additional transformations from a JSON file."""
        if not path.exists():
            return
        with path.open("r", encoding="utf-8") as fp:
            data = json.load(fp)
        for entry in data:
            self.add(spec_from_dict(entry))

    def add(self, spec: TransformationSpec) -> None:
        self._specs[spec.key] = spec

    def list(self) -> List[TransformationSpec]:
        """Return top-level entries in declaration order."""
        return list(self._specs.values())

    def keys(self) -> List[str]:
        return list(self._specs.keys())

    def flatten(self) -> List[TransformationSpec]:
        """Return every selectable transformation, expanding categories."""
        flat: List[TransformationSpec] = []
        for spec in self._specs.values():
            if spec.is_category:
                flat.extend(spec.items)
            else:
                flat.append(spec)
        return flat

    def get(self, key: str) -> TransformationSpec:
        """Retrieve a transformation by key, searching inside categories too."""
        if key in self._specs:
            return self._specs[key]
        for spec in self._specs.values():
            for item in spec.items:
                if item.key == key:
                    return item
        raise KeyError(f"Transformation '{key}' not found")
