"""
gateway.py - every Gemini operation the studio performs.

Each call goes through the ResilientInvoker (key rotation + retry) and, when a
CreditLedger is attached, is charged one credit up front and refunded if it
fails. Errors leave the gateway already translated into the StudioError
taxonomy so callers can branch on type.

Operations:
  ┌──────────────────────┬───────────────┬─────────────────────────────────────┐
  │ Method               │ Model setting │ Returns                             │
  ├──────────────────────┼───────────────┼─────────────────────────────────────┤
  │ validate_connection  │ text_model    │ bool (never charged, never raises)  │
  │ generate_asset       │ image_model   │ ImageBlob                           │
  │ generate_mockup      │ image_model   │ ImageBlob                           │
  │ remove_background    │ edit_model    │ ImageBlob                           │
  │ refine_image         │ image_model   │ ImageBlob                           │
  │ realtime_composite   │ image_model   │ ImageBlob                           │
  │ analyze_asset        │ text_model    │ AssetAnalysis                       │
  │ interpret_command    │ text_model    │ StudioCommand                       │
  └──────────────────────┴───────────────┴─────────────────────────────────────┘

Image responses fail in three distinct ways: an upfront prompt block
(ContentBlocked, stage "prompt"), a finish reason other than STOP
(ContentBlocked, stage "finish"), or a normal response carrying no image
(MalformedResponse).
"""

from __future__ import annotations

import base64
import logging
from contextlib import nullcontext
from typing import Any, Callable, Iterable, List, Literal, Optional, Sequence, Tuple, Type, TypeVar

from google import genai
from google.genai import types
from pydantic import BaseModel, Field, ValidationError

from . import prompts
from .assets import ImageSource, load_image_source
from .config import StudioSettings
from .credits import CreditLedger
from .errors import ContentBlocked, MalformedResponse, StudioError, translate_error
from .invoker import ResilientInvoker
from .models import Asset, ImageBlob, PlacedLayer

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
T = TypeVar("T")

OK_FINISH_REASONS = {"STOP", "FINISH_REASON_UNSPECIFIED", ""}


# ── Structured outputs ────────────────────────────────────────────────────────

class AssetAnalysis(BaseModel):
    name: str = Field(description="Short descriptive name, at most 4 words.")
    type: Literal["product", "logo"] = Field(
        description="'product' for an object (shirt, bottle, box); 'logo' for a graphic, text or symbol."
    )


class LayerUpdates(BaseModel):
    x: Optional[float] = Field(None, description="Horizontal centre, 0-100 percent of canvas width.")
    y: Optional[float] = Field(None, description="Vertical centre, 0-100 percent of canvas height.")
    scale: Optional[float] = Field(None, description="Size multiplier, 1.0 is default.")
    rotation: Optional[float] = Field(None, description="Clockwise degrees, 0-360.")
    blend_mode: Optional[Literal["normal", "multiply", "screen"]] = None

    def as_changes(self) -> dict:
        return self.model_dump(exclude_none=True)


class StudioCommand(BaseModel):
    action: Literal["UPDATE", "DELETE", "CLEAR", "UNKNOWN"]
    layer_id: Optional[str] = Field(None, description="layerId of the target layer.")
    updates: Optional[LayerUpdates] = None
    message: str = Field("", description="Short confirmation shown to the user.")


# ── Response parsing ──────────────────────────────────────────────────────────

def _enum_name(value: Any) -> str:
    if value is None:
        return ""
    return str(getattr(value, "value", value)).upper()


def extract_image(response: Any) -> ImageBlob:
    """Pull the first inline image out of a generate_content response."""
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = getattr(feedback, "block_reason", None) if feedback is not None else None
    if block_reason:
        raise ContentBlocked(_enum_name(block_reason), stage="prompt")

    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        raise MalformedResponse("No candidates returned.")

    finish = _enum_name(getattr(candidates[0], "finish_reason", None))
    if finish not in OK_FINISH_REASONS:
        raise ContentBlocked(finish, stage="finish")

    for candidate in candidates:
        content = getattr(candidate, "content", None)
        for part in (content.parts if content is not None else None) or []:
            inline = getattr(part, "inline_data", None)
            if inline and inline.data:
                data = inline.data
                if isinstance(data, str):
                    data = base64.b64decode(data)
                return ImageBlob(inline.mime_type or "image/png", data)

    raise MalformedResponse("No image generated.")


def parse_structured(response: Any, model: Type[M]) -> M:
    text = getattr(response, "text", None)
    if not text:
        raise MalformedResponse("Gemini returned no content")
    try:
        return model.model_validate_json(text)
    except ValidationError as exc:
        raise MalformedResponse(f"Invalid {model.__name__} payload: {exc}") from exc


# ── Gateway ───────────────────────────────────────────────────────────────────

ClientFactory = Callable[[str], Any]


class AIGateway:

    def __init__(
        self,
        invoker: ResilientInvoker,
        settings: Optional[StudioSettings] = None,
        ledger: Optional[CreditLedger] = None,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.invoker = invoker
        self.settings = settings or StudioSettings(api_keys=[])
        self.ledger = ledger
        self._client_factory = client_factory or self._default_client

    def _default_client(self, api_key: str) -> genai.Client:
        timeout_ms = int(self.settings.request_timeout * 1000)
        return genai.Client(api_key=api_key, http_options=types.HttpOptions(timeout=timeout_ms))

    # ── Plumbing ──────────────────────────────────────────────────────────────

    def _call(
        self,
        model: str,
        contents: List[Any],
        config: Optional[types.GenerateContentConfig],
        parse: Callable[[Any], T],
    ) -> T:
        def operation(api_key: str) -> T:
            client = self._client_factory(api_key)
            response = client.models.generate_content(model=model, contents=contents, config=config)
            return parse(response)

        return self.invoker.invoke(operation)

    def _charged(self, description: str, run: Callable[[], T]) -> T:
        guard = self.ledger.charge(1, description) if self.ledger is not None else nullcontext()
        with guard:
            try:
                return run()
            except StudioError:
                raise
            except Exception as exc:
                logger.error("%s failed: %s", description, exc)
                raise translate_error(exc) from exc

    def _image_call(self, description: str, model: str, contents: List[Any]) -> ImageBlob:
        config = types.GenerateContentConfig(response_modalities=["IMAGE"])
        return self._charged(description, lambda: self._call(model, contents, config, extract_image))

    @staticmethod
    def _image_part(source: ImageSource) -> types.Part:
        blob = load_image_source(source)
        return types.Part.from_bytes(data=blob.data, mime_type=blob.mime_type)

    # ── Operations ────────────────────────────────────────────────────────────

    def validate_connection(self) -> bool:
        try:
            self._call(
                self.settings.text_model,
                [types.Part.from_text(text=prompts.PING_PROMPT)],
                types.GenerateContentConfig(max_output_tokens=1),
                lambda response: response,
            )
        except Exception as exc:
            logger.warning("Connection check failed: %s", exc)
            return False
        return True

    def generate_asset(self, description: str, asset_type: str) -> ImageBlob:
        prompt = prompts.asset_prompt(description, asset_type)
        return self._image_call(
            f"{asset_type} generation",
            self.settings.image_model,
            [types.Part.from_text(text=prompt)],
        )

    def generate_mockup(
        self,
        product: ImageSource,
        layers: Sequence[Tuple[Asset, PlacedLayer]],
        instruction: str,
    ) -> ImageBlob:
        """Composite the overlays onto the product. `layers` is bottom-to-top."""
        parts: List[Any] = [self._image_part(product)]
        for asset, _layer in layers:
            parts.append(self._image_part(asset))
        hints = prompts.layout_hints(layers)
        parts.append(types.Part.from_text(text=prompts.mockup_prompt(instruction, hints, len(layers))))
        return self._image_call("mockup generation", self.settings.image_model, parts)

    def remove_background(self, image: ImageSource) -> ImageBlob:
        parts = [self._image_part(image), types.Part.from_text(text=prompts.REMOVE_BACKGROUND_PROMPT)]
        return self._image_call("background removal", self.settings.edit_model, parts)

    def refine_image(self, image: ImageSource, instruction: str) -> ImageBlob:
        parts = [self._image_part(image), types.Part.from_text(text=prompts.refine_prompt(instruction))]
        return self._image_call("image refinement", self.settings.image_model, parts)

    def realtime_composite(self, image: ImageSource, task: str = prompts.DEFAULT_REALTIME_TASK) -> ImageBlob:
        parts = [self._image_part(image), types.Part.from_text(text=prompts.realtime_prompt(task))]
        return self._image_call("realtime composite", self.settings.image_model, parts)

    def analyze_asset(self, image: ImageSource) -> AssetAnalysis:
        parts = [self._image_part(image), types.Part.from_text(text=prompts.ANALYZE_PROMPT)]
        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=AssetAnalysis,
        )
        return self._charged(
            "asset analysis",
            lambda: self._call(
                self.settings.text_model, parts, config,
                lambda response: parse_structured(response, AssetAnalysis),
            ),
        )

    def interpret_command(
        self,
        command: str,
        layers: Sequence[PlacedLayer],
        assets: Iterable[Asset],
        active_layer_id: Optional[str] = None,
    ) -> StudioCommand:
        assets = list(assets)
        context = prompts.command_context(layers, assets, active_layer_id)
        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=StudioCommand,
        )
        result = self._charged(
            "command",
            lambda: self._call(
                self.settings.text_model,
                [types.Part.from_text(text=prompts.command_prompt(context, command))],
                config,
                lambda response: parse_structured(response, StudioCommand),
            ),
        )
        return resolve_command_target(result, command, layers, assets, active_layer_id)


def resolve_command_target(
    result: StudioCommand,
    command: str,
    layers: Sequence[PlacedLayer],
    assets: Iterable[Asset],
    active_layer_id: Optional[str],
) -> StudioCommand:
    """Fill in or correct the target layer when the model named none or a bogus one."""
    if result.action not in ("UPDATE", "DELETE"):
        return result

    ids = {layer.uid for layer in layers}
    if result.layer_id in ids:
        return result

    target = active_layer_id if active_layer_id in ids else None
    if target is None:
        target = prompts.match_layer_by_name(command, layers, assets)
    if target is None:
        logger.info("Command %r names no known layer", command)
        return StudioCommand(action="UNKNOWN", message="I couldn't tell which layer you meant.")
    return result.model_copy(update={"layer_id": target})
