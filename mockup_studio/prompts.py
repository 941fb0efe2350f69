"""
prompts.py - pure prompt construction from layer geometry and instructions.

Nothing here talks to the network. Layer placement is described to the model
both as a coarse screen region (top/center/bottom x left/center/right, split
at 33% and 66%) and as exact percentages, with the stacking order spelled out
because the model otherwise treats the overlay images as unordered.
"""

from __future__ import annotations

import difflib
import json
import math
import re
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import Asset, BlendMode, PlacedLayer

LOW_THRESHOLD  = 33
HIGH_THRESHOLD = 66
NAME_MATCH_CUTOFF = 0.6

# Canvas positions the command interpreter may resolve phrases to.
SEMANTIC_ANCHORS: Dict[str, Tuple[float, float]] = {
    "center":     (50.0, 50.0),
    "left chest": (65.0, 30.0),
    "heart":      (65.0, 30.0),
    "pocket":     (65.0, 35.0),
}
SCALE_HINTS: Dict[str, float] = {
    "default": 1.0,
    "smaller": 0.5,
    "bigger":  1.5,
}

ASSET_STYLE_HINTS = {
    "logo": (
        "A high-quality, professional vector-style logo design of a {prompt}. "
        "Isolated on a pure white background. Minimalist and clean, single distinct logo."
    ),
    "product": (
        "Professional studio product photography of a single {prompt}. "
        "Ghost mannequin style or flat lay. Front view, isolated on neutral background. "
        "High resolution, photorealistic. Single object only, no stacks, no duplicates."
    ),
}

BLEND_MODE_RULES = (
    "IMPORTANT BLEND MODE HANDLING:\n"
    "- If Blend Mode is \"multiply\": The logo should look like it is printed into the fabric, "
    "darkening the underlying texture. White areas of the logo should be transparent.\n"
    "- If Blend Mode is \"screen\": The logo should look like a light print on dark fabric."
)

REMOVE_BACKGROUND_PROMPT = (
    "Remove the background from this image. "
    "Return the subject isolated on a transparent background."
)

ANALYZE_PROMPT = (
    "Analyze this image. "
    "1. Generate a short, descriptive name (max 4 words). "
    "2. Categorize it as either a 'product' (an object like a shirt, bottle, box) "
    "or a 'logo' (graphic, text, symbol). Return JSON."
)

DEFAULT_REALTIME_TASK = "Make this look like a real photo"
PING_PROMPT = "ping"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def region_label(x: float, y: float) -> str:
    """Coarse placement such as 'top-left' or 'center-center'."""
    v = "top" if y < LOW_THRESHOLD else "bottom" if y > HIGH_THRESHOLD else "center"
    h = "left" if x < LOW_THRESHOLD else "right" if x > HIGH_THRESHOLD else "center"
    return f"{v}-{h}"


def layout_hints(layers: Sequence[Tuple[Asset, PlacedLayer]]) -> str:
    lines: List[str] = []
    for index, (_asset, layer) in enumerate(layers):
        below = (
            "the Product Base"
            if index == 0 else
            f"Logo {index} and the Product Base"
        )
        lines.append(
            f"- Logo {index + 1}: Place at {region_label(layer.x, layer.y)} area "
            f"(approx coords: {_round_half_up(layer.x)}% x, {_round_half_up(layer.y)}% y). "
            f"Scale: {layer.scale:g}. Rotation: {layer.rotation:g}deg. "
            f"Blend Mode: {BlendMode.coerce(layer.blend_mode).value}. "
            f"Stacking Order: This logo is ON TOP of {below}."
        )
    return "\n".join(lines)


def mockup_prompt(instruction: str, hints: str, layer_count: int) -> str:
    image_range = "image 2" if layer_count == 1 else f"images 2-{layer_count + 1}"
    return (
        f"User Instructions: {instruction}\n\n"
        "Layout Guidance based on user's rough placement on canvas:\n"
        f"{hints}\n\n"
        f"System Task: Composite the provided logo images ({image_range}) onto the first image "
        "(the product) to create a realistic product mockup.\n"
        "Follow the Layout Guidance for positioning if provided, but prioritize realistic "
        "surface warping, lighting, and perspective blending.\n\n"
        "IMPORTANT STACKING ORDER:\n"
        "The images are provided in order from bottom to top. "
        "The last image provided is the topmost layer.\n\n"
        f"{BLEND_MODE_RULES}\n\n"
        "Output ONLY the resulting image."
    )


def asset_prompt(description: str, asset_type: str) -> str:
    template = ASSET_STYLE_HINTS.get(asset_type)
    if template is None:
        raise ValueError(f"asset_type must be 'logo' or 'product', got {asset_type!r}")
    return template.format(prompt=description.strip())


def refine_prompt(instruction: str) -> str:
    return (
        f"Edit this image. Instruction: {instruction}. "
        "Maintain composition. Output ONLY the resulting image."
    )


def realtime_prompt(task: str = DEFAULT_REALTIME_TASK) -> str:
    return (
        f"Input is a rough AR composite. Task: {task}. "
        "Render the overlaid object naturally into the scene. Match lighting/shadows. "
        "Output ONLY the resulting image."
    )


# ── Natural-language layer commands ───────────────────────────────────────────

def command_context(
    layers: Sequence[PlacedLayer],
    assets: Iterable[Asset],
    active_layer_id: Optional[str],
) -> Dict[str, object]:
    by_id = {a.id: a for a in assets}
    enriched = []
    for layer in layers:
        asset = by_id.get(layer.asset_id)
        enriched.append({
            "layerId":   layer.uid,
            "x":         layer.x,
            "y":         layer.y,
            "scale":     layer.scale,
            "rotation":  layer.rotation,
            "blendMode": layer.blend_mode.value,
            "assetName": asset.name if asset else "Unknown Layer",
            "assetType": asset.type if asset else "unknown",
        })
    return {
        "layers":        enriched,
        "activeLayerId": active_layer_id,
        "canvasSize":    "100x100 units",
        "center":        "50,50",
    }


def _anchor_rules() -> str:
    c = SEMANTIC_ANCHORS
    return "\n".join([
        f"- \"Left chest\" or \"Heart\" implies approx x:{c['left chest'][0]:g}, "
        f"y:{c['left chest'][1]:g} for a shirt facing front.",
        f"- \"Pocket\" implies approx x:{c['pocket'][0]:g}, y:{c['pocket'][1]:g}.",
        f"- \"Center\" is x:{c['center'][0]:g}, y:{c['center'][1]:g}.",
        f"- Scale {SCALE_HINTS['default']:.1f} is default. \"Smaller\" might be "
        f"{SCALE_HINTS['smaller']:g}. \"Bigger\" might be {SCALE_HINTS['bigger']:g}.",
    ])


def command_prompt(context: Mapping[str, object], command: str) -> str:
    return (
        "You are a professional design assistant for a product mockup tool.\n"
        f"Current Canvas State: {json.dumps(context)}\n"
        f"User Command: \"{command}\"\n\n"
        "Your Goal: Interpret the command and calculate the precise new coordinates/properties.\n"
        "Answer with action UPDATE (one layer's fields), DELETE (one layer), CLEAR (every layer) "
        "or UNKNOWN (anything else), plus a short confirmation message.\n\n"
        "Rules:\n"
        f"{_anchor_rules()}\n"
        "- Identify the target layer by fuzzy matching the asset name (e.g. \"red shoe\") "
        "or using the activeLayerId."
    )


def match_layer_by_name(
    command: str,
    layers: Sequence[PlacedLayer],
    assets: Iterable[Asset],
    cutoff: float = NAME_MATCH_CUTOFF,
) -> Optional[str]:
    """
    Best-effort pick of the layer whose asset name the command mentions.

    Exact substring hits win; otherwise every run of command words as long
    as the asset name is compared with difflib and the best ratio above
    cutoff wins.
    """
    by_id = {a.id: a for a in assets}
    text = command.lower()
    words = re.findall(r"[a-z0-9]+", text)

    best_uid: Optional[str] = None
    best_score = 0.0
    for layer in layers:
        asset = by_id.get(layer.asset_id)
        if asset is None or not asset.name.strip():
            continue
        name = asset.name.lower().strip()
        if name in text:
            score = 1.0
        else:
            width = max(1, len(name.split()))
            windows = [" ".join(words[i:i + width]) for i in range(max(1, len(words) - width + 1))]
            score = max(
                (difflib.SequenceMatcher(None, name, w).ratio() for w in windows if w),
                default=0.0,
            )
        if score > best_score:
            best_uid, best_score = layer.uid, score

    return best_uid if best_score >= cutoff else None
