import base64

import pytest

from mockup_studio.models import Asset, BlendMode, ImageBlob, PlacedLayer
from mockup_studio.utils import Debouncer, clamp, key_suffix


class TestPlacedLayer:

    def test_clamps_on_construction(self):
        layer = PlacedLayer(uid="1", asset_id="a", x=-5, y=250, scale=0.01, rotation=725, blend_mode="bogus")
        assert (layer.x, layer.y, layer.scale, layer.rotation) == (0, 100, 0.1, 5)
        assert layer.blend_mode is BlendMode.NORMAL

    def test_with_changes_ignores_unknown_and_none(self):
        layer = PlacedLayer(uid="1", asset_id="a")
        assert layer.with_changes(x=None, uid="2", asset_id="b") is layer
        moved = layer.with_changes(x=10)
        assert moved.x == 10 and moved.uid == "1"

    def test_from_dict_accepts_camel_case(self):
        layer = PlacedLayer.from_dict({"uid": "1", "assetId": "a", "blendMode": "screen", "scale": 2})
        assert layer.asset_id == "a"
        assert layer.blend_mode is BlendMode.SCREEN
        assert PlacedLayer.from_dict(layer.to_dict()) == layer


class TestImageBlob:

    def test_data_uri(self):
        blob = ImageBlob("image/webp", b"abc")
        assert blob.to_data_uri() == "data:image/webp;base64," + base64.b64encode(b"abc").decode()
        assert ImageBlob.from_data_uri(blob.to_data_uri()) == blob

    @pytest.mark.parametrize("mime, ext", [("image/jpeg", ".jpg"), ("image/png", ".png"), ("image/webp", ".webp")])
    def test_extension(self, mime, ext):
        assert ImageBlob(mime, b"").extension == ext

    def test_save_creates_parents(self, tmp_path):
        path = ImageBlob("image/png", b"x").save(tmp_path / "a" / "b.png")
        assert path.read_bytes() == b"x"


def test_asset_from_file_names_from_stem(tmp_path):
    path = tmp_path / "acme_logo.png"
    path.write_bytes(b"\x89PNG")
    asset = Asset.from_file(path, "logo")
    assert asset.name == "acme logo"
    assert Asset.from_dict(asset.to_dict()) == asset


def test_helpers():
    assert clamp(5, 0, 3) == 3
    assert key_suffix("AIzaSecret1234") == "...1234"


class TestDebouncer:

    def test_burst_fires_once(self, timers):
        calls = []
        debouncer = Debouncer(0.5, lambda: calls.append(1), timers)
        for _ in range(3):
            debouncer.trigger()
        assert sum(t.cancelled for t in timers.timers) == 2
        timers.fire_all()
        assert calls == [1]
        assert not debouncer.pending

    def test_stale_timer_does_not_fire(self, timers):
        calls = []
        debouncer = Debouncer(0.5, lambda: calls.append(1), timers)
        debouncer.trigger()
        stale = timers.timers[0]
        debouncer.trigger()
        stale.fn()
        assert calls == []

    def test_flush_and_cancel(self, timers):
        calls = []
        debouncer = Debouncer(0.5, lambda: calls.append(1), timers)
        debouncer.flush()
        assert calls == []
        debouncer.trigger()
        debouncer.flush()
        assert calls == [1]
        debouncer.trigger()
        debouncer.cancel()
        timers.fire_all()
        assert calls == [1]
