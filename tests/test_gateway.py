import base64
import json
from types import SimpleNamespace

import pytest
from google.genai import types

from conftest import (
    FakeGenai,
    blocked_response,
    finish_response,
    image_response,
    make_asset,
    png_bytes,
    text_response,
)
from mockup_studio.config import StudioSettings
from mockup_studio.credits import CreditLedger
from mockup_studio.errors import ContentBlocked, InsufficientCredits, MalformedResponse, QuotaExhausted
from mockup_studio.gateway import AIGateway, StudioCommand, extract_image, resolve_command_target
from mockup_studio.invoker import ResilientInvoker
from mockup_studio.key_pool import KeyPool
from mockup_studio.models import ImageBlob, PlacedLayer


@pytest.fixture
def ledger(store, clock):
    return CreditLedger(store, initial=3, clock=clock)


def make_gateway(fake, clock, ledger=None, keys=("k1", "k2")):
    pool = KeyPool(list(keys), clock=clock)
    invoker = ResilientInvoker(pool, sleep=lambda _s: None)
    settings = StudioSettings(api_keys=list(keys))
    return AIGateway(invoker, settings, ledger=ledger, client_factory=fake), pool


class TestExtractImage:

    def test_inline_bytes(self):
        blob = extract_image(image_response(b"img", "image/webp"))
        assert blob == ImageBlob("image/webp", b"img")

    def test_base64_string_payload(self):
        blob = extract_image(image_response(base64.b64encode(b"img").decode()))
        assert blob.data == b"img"

    def test_prompt_block(self):
        with pytest.raises(ContentBlocked) as info:
            extract_image(blocked_response(types.BlockedReason.SAFETY))
        assert info.value.stage == "prompt"
        assert info.value.reason == "SAFETY"

    def test_finish_reason_block(self):
        with pytest.raises(ContentBlocked) as info:
            extract_image(finish_response(types.FinishReason.RECITATION))
        assert info.value.stage == "finish"

    def test_stop_enum_is_fine(self):
        assert extract_image(image_response(b"x", finish_reason=types.FinishReason.STOP)).data == b"x"

    def test_no_image(self):
        with pytest.raises(MalformedResponse):
            extract_image(text_response("sorry, words only"))

    def test_no_candidates(self):
        with pytest.raises(MalformedResponse):
            extract_image(SimpleNamespace(prompt_feedback=None, candidates=[], text=None))


class TestImageOperations:

    def test_generate_asset(self, clock, ledger):
        fake = FakeGenai(image_response(b"logo"))
        gateway, _ = make_gateway(fake, clock, ledger)
        blob = gateway.generate_asset("fox", "logo")
        assert blob.data == b"logo"
        assert ledger.balance == 2
        call = fake.calls[0]
        assert call.model == gateway.settings.image_model
        assert "vector-style logo" in call.contents[0].text
        assert call.config.response_modalities == ["IMAGE"]

    def test_generate_mockup_parts_order(self, clock, ledger):
        fake = FakeGenai(image_response(b"mock"))
        gateway, _ = make_gateway(fake, clock, ledger)
        product = make_asset("p", type="product", color=(0, 0, 255, 255))
        logo = make_asset("l")
        layer = PlacedLayer(uid="1", asset_id="l", x=20, y=20)

        assert gateway.generate_mockup(product, [(logo, layer)], "Make it real").data == b"mock"

        contents = fake.calls[0].contents
        assert len(contents) == 3
        assert contents[0].inline_data.data == product.image_data
        assert contents[1].inline_data.data == logo.image_data
        assert "Make it real" in contents[2].text
        assert "top-left" in contents[2].text

    def test_remove_background_uses_edit_model(self, clock):
        fake = FakeGenai(image_response())
        gateway, _ = make_gateway(fake, clock)
        gateway.remove_background(png_bytes())
        assert fake.calls[0].model == gateway.settings.edit_model

    def test_refine_and_realtime(self, clock):
        fake = FakeGenai(image_response(b"a"), image_response(b"b"))
        gateway, _ = make_gateway(fake, clock)
        assert gateway.refine_image(png_bytes(), "warmer").data == b"a"
        assert gateway.realtime_composite(png_bytes()).data == b"b"
        assert "Instruction: warmer" in fake.calls[0].contents[1].text
        assert "rough AR composite" in fake.calls[1].contents[1].text


class TestFailures:

    def test_quota_failure_refunds_one_credit(self, clock, ledger):
        fake = FakeGenai(default=RuntimeError("quota exceeded"))
        gateway, pool = make_gateway(fake, clock, ledger, keys=("k1",))

        with pytest.raises(QuotaExhausted) as info:
            gateway.generate_asset("fox", "logo")

        assert isinstance(info.value.__cause__, RuntimeError)
        assert ledger.balance == 3
        assert [t["type"] for t in ledger.transactions()] == ["refund", "spend"]
        assert pool._by_key["k1"].last_failure_was_quota

    def test_blocked_refunds_and_does_not_retry(self, clock, ledger):
        fake = FakeGenai(blocked_response("SAFETY"), image_response())
        gateway, _ = make_gateway(fake, clock, ledger)
        with pytest.raises(ContentBlocked):
            gateway.generate_asset("fox", "logo")
        assert len(fake.calls) == 1
        assert ledger.balance == 3

    def test_missing_image_retried_then_raised(self, clock, ledger):
        fake = FakeGenai(default=text_response("no picture"))
        gateway, _ = make_gateway(fake, clock, ledger)
        with pytest.raises(MalformedResponse):
            gateway.generate_asset("fox", "logo")
        assert len(fake.calls) == 3
        assert ledger.balance == 3

    def test_insufficient_credits_skips_call(self, clock, store):
        fake = FakeGenai(image_response())
        gateway, _ = make_gateway(fake, clock, CreditLedger(store, initial=0, clock=clock))
        with pytest.raises(InsufficientCredits):
            gateway.generate_asset("fox", "logo")
        assert fake.calls == []

    def test_validate_connection(self, clock, ledger):
        gateway, _ = make_gateway(FakeGenai(text_response("pong")), clock, ledger)
        assert gateway.validate_connection() is True
        failing, _ = make_gateway(FakeGenai(default=RuntimeError("denied")), clock, ledger)
        assert failing.validate_connection() is False
        assert ledger.balance == 3


class TestStructuredOperations:

    def test_analyze_asset(self, clock, ledger):
        fake = FakeGenai(text_response('{"name": "Red Tee", "type": "product"}'))
        gateway, _ = make_gateway(fake, clock, ledger)
        result = gateway.analyze_asset(png_bytes())
        assert (result.name, result.type) == ("Red Tee", "product")
        assert fake.calls[0].config.response_mime_type == "application/json"
        assert ledger.balance == 2

    def test_analyze_invalid_json(self, clock, ledger):
        fake = FakeGenai(default=text_response('{"name": "x", "type": "poster"}'))
        gateway, _ = make_gateway(fake, clock, ledger)
        with pytest.raises(MalformedResponse):
            gateway.analyze_asset(png_bytes())
        assert ledger.balance == 3

    def test_interpret_command_fills_active_layer(self, clock):
        payload = {"action": "UPDATE", "layer_id": "bogus", "updates": {"x": 65, "y": 30}, "message": "Moved"}
        fake = FakeGenai(text_response(json.dumps(payload)))
        gateway, _ = make_gateway(fake, clock)
        layers = [PlacedLayer(uid="L1", asset_id="a"), PlacedLayer(uid="L2", asset_id="b")]
        assets = [make_asset("a", name="Red Shoe"), make_asset("b", name="Blue Cup")]

        result = gateway.interpret_command("move it to the left chest", layers, assets, active_layer_id="L2")

        assert result.action == "UPDATE"
        assert result.layer_id == "L2"
        assert result.updates.as_changes() == {"x": 65.0, "y": 30.0}
        assert '"activeLayerId": "L2"' in fake.calls[0].contents[0].text


class TestResolveCommandTarget:

    layers = [PlacedLayer(uid="L1", asset_id="a"), PlacedLayer(uid="L2", asset_id="b")]
    assets = [make_asset("a", name="Red Shoe"), make_asset("b", name="Blue Cup")]

    def test_valid_id_kept(self):
        cmd = StudioCommand(action="DELETE", layer_id="L1")
        assert resolve_command_target(cmd, "delete", self.layers, self.assets, "L2").layer_id == "L1"

    def test_fuzzy_when_no_active(self):
        cmd = StudioCommand(action="DELETE")
        assert resolve_command_target(cmd, "remove the blue cup", self.layers, self.assets, None).layer_id == "L2"

    def test_unresolvable_becomes_unknown(self):
        cmd = StudioCommand(action="DELETE", layer_id="nope")
        assert resolve_command_target(cmd, "remove it", self.layers, self.assets, None).action == "UNKNOWN"

    def test_clear_untouched(self):
        cmd = StudioCommand(action="CLEAR")
        assert resolve_command_target(cmd, "clear", self.layers, self.assets, None) is cmd
