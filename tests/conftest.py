import io
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest
from PIL import Image

sys.path.insert(0, str(Path(__file__).parent.parent))

from mockup_studio.models import Asset
from mockup_studio.storage import MemoryStore


# ── Time ──────────────────────────────────────────────────────────────────────

class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeTimer:
    def __init__(self, delay, fn):
        self.delay = delay
        self.fn = fn
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.started and not self.cancelled and not self.fired:
            self.fired = True
            self.fn()


class TimerFactory:
    """Stands in for threading.Timer; tests fire timers by hand."""

    def __init__(self):
        self.timers = []

    def __call__(self, delay, fn):
        timer = FakeTimer(delay, fn)
        self.timers.append(timer)
        return timer

    @property
    def live(self):
        return [t for t in self.timers if t.started and not t.cancelled and not t.fired]

    def fire_all(self):
        for timer in list(self.live):
            timer.fire()


# ── Gemini fakes ──────────────────────────────────────────────────────────────

def image_response(data=b"\x89PNG\r\n\x1a\nfake", mime_type="image/png", finish_reason="STOP"):
    part = SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type=mime_type), text=None)
    candidate = SimpleNamespace(content=SimpleNamespace(parts=[part]), finish_reason=finish_reason)
    return SimpleNamespace(prompt_feedback=None, candidates=[candidate], text=None)


def text_response(text):
    part = SimpleNamespace(inline_data=None, text=text)
    candidate = SimpleNamespace(content=SimpleNamespace(parts=[part]), finish_reason="STOP")
    return SimpleNamespace(prompt_feedback=None, candidates=[candidate], text=text)


def blocked_response(reason="SAFETY"):
    return SimpleNamespace(prompt_feedback=SimpleNamespace(block_reason=reason), candidates=[], text=None)


def finish_response(reason):
    candidate = SimpleNamespace(content=SimpleNamespace(parts=[]), finish_reason=reason)
    return SimpleNamespace(prompt_feedback=None, candidates=[candidate], text=None)


class FakeModels:
    def __init__(self, owner):
        self.owner = owner

    def generate_content(self, model, contents, config=None):
        self.owner.calls.append(SimpleNamespace(key=self.owner.current_key, model=model, contents=contents, config=config))
        outcome = self.owner.outcomes.pop(0) if self.owner.outcomes else self.owner.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeGenai:
    """
    Client factory returning one shared fake client. `outcomes` is consumed
    one per call: a response object is returned, an exception is raised.
    """

    def __init__(self, *outcomes, default=None):
        self.outcomes = list(outcomes)
        self.default = default if default is not None else image_response()
        self.calls = []
        self.current_key = None
        self.models = FakeModels(self)

    def __call__(self, api_key):
        self.current_key = api_key
        return self


# ── Images ────────────────────────────────────────────────────────────────────

def png_bytes(size=(40, 20), color=(255, 0, 0, 255)):
    buf = io.BytesIO()
    Image.new("RGBA", size, color).save(buf, "PNG")
    return buf.getvalue()


def make_asset(asset_id, type="logo", name=None, size=(40, 20), color=(255, 0, 0, 255)):
    return Asset(
        id=asset_id,
        type=type,
        name=name or asset_id,
        image_data=png_bytes(size, color),
        mime_type="image/png",
    )


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers():
    return TimerFactory()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def no_sleep():
    calls = []
    return calls.append, calls
