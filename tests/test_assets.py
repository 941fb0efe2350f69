import base64
from types import SimpleNamespace

import pytest
import requests

from conftest import make_asset, png_bytes
from mockup_studio import assets as assets_module
from mockup_studio.assets import AssetStore, load_image_source, sniff_mime
from mockup_studio.errors import AssetLoadError
from mockup_studio.models import ImageBlob


class TestAssetStore:

    def test_add_get_remove_notify(self):
        library = AssetStore()
        seen = []
        unsubscribe = library.subscribe(lambda items: seen.append([a.id for a in items]))

        library.add(make_asset("p", type="product"))
        library.add(make_asset("l"))
        assert library.get("p").type == "product"
        assert [a.id for a in library.products()] == ["p"]
        assert library.remove("l")
        assert not library.remove("l")
        assert seen == [["p"], ["p", "l"], ["p"]]

        unsubscribe()
        library.add(make_asset("x"))
        assert len(seen) == 3

    def test_persists_through_store(self, store):
        AssetStore(store).add(make_asset("p", type="product", name="Tee"))
        reloaded = AssetStore(store).get("p")
        assert reloaded.name == "Tee"
        assert reloaded.image_data == make_asset("p").image_data

    def test_unreadable_entries_skipped(self, store):
        store.set_object("assets", [{"name": "no id"}, make_asset("ok").to_dict()])
        assert AssetStore(store).ids() == {"ok"}


class TestLoadImageSource:

    def test_passthrough_and_bytes(self):
        blob = ImageBlob("image/png", b"x")
        assert load_image_source(blob) is blob
        assert load_image_source(png_bytes()).mime_type == "image/png"
        assert load_image_source(make_asset("a")).mime_type == "image/png"

    def test_data_uri(self):
        blob = load_image_source("data:image/jpeg;base64," + base64.b64encode(b"abc").decode())
        assert blob == ImageBlob("image/jpeg", b"abc")

    def test_file_path(self, tmp_path):
        path = tmp_path / "logo.png"
        path.write_bytes(png_bytes())
        assert load_image_source(str(path)).data == path.read_bytes()
        assert load_image_source(path).mime_type == "image/png"

    def test_bare_base64(self):
        raw = png_bytes()
        assert load_image_source(base64.b64encode(raw).decode()).data == raw

    def test_garbage(self):
        with pytest.raises(AssetLoadError):
            load_image_source("definitely not an image!")

    def test_url(self, monkeypatch):
        def fake_get(url, timeout, headers):
            return SimpleNamespace(
                content=b"\xff\xd8\xffdata",
                headers={"Content-Type": "application/octet-stream"},
                raise_for_status=lambda: None,
            )

        monkeypatch.setattr(assets_module.requests, "get", fake_get)
        assert load_image_source("https://example.com/a").mime_type == "image/jpeg"

    def test_url_failure(self, monkeypatch):
        def fake_get(url, timeout, headers):
            raise requests.ConnectionError("down")

        monkeypatch.setattr(assets_module.requests, "get", fake_get)
        with pytest.raises(AssetLoadError):
            load_image_source("https://example.com/a")


def test_sniff_mime():
    assert sniff_mime(b"\xff\xd8\xff\xe0") == "image/jpeg"
    assert sniff_mime(b"RIFF1234WEBPVP8") == "image/webp"
    assert sniff_mime(b"???") == "image/png"
