import io
import json
import threading

import pytest
from PIL import Image

from mockup_engine.framework.config import AppConfig
from mockup_engine.framework.errors import ProviderError
from mockup_engine.framework.runtime import open_run
from mockup_engine.framework.spec import parse_spec_text
from mockup_engine.providers import ProviderRegistry
from mockup_engine.providers.base import ProviderAdapter

SPEC_TEXT = """# Where Is My Car?

## Description
Design a simple mobile UI with two screens:
1) **Save Spot** - large level buttons plus a text field for a custom label.
2) **Find Car** - shows the last saved spot and a big Navigate call to action.

## Type
Mobile application UI

## Styles
Warm palette with a red accent.
"""


def png_bytes(color=(120, 120, 120), size=(8, 8)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def write_png(path, color=(120, 120, 120)) -> str:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(png_bytes(color))
    return str(path)


def critique_json(scores, *, issues=None, revise_prompt="Raise contrast on the main action.") -> str:
    return json.dumps(
        {
            "scores": scores,
            "strengths": ["Clear layout"],
            "issues": list(issues or ["Low contrast"]),
            "revisePrompt": revise_prompt,
        }
    )


class FakeAdapter(ProviderAdapter):
    """In-memory provider; records calls and fails on demand."""

    name = "fake"

    def __init__(self):
        self._lock = threading.Lock()
        self.generate_calls = []
        self.edit_calls = []
        self.critique_calls = []
        self.fail_generate = lambda model, prompt, seed: False
        self.fail_edit = lambda model, prompt: False
        self.critique_for = lambda image_bytes, prompt: critique_json(
            {"task_fitness": 80, "hierarchy": 80, "a11y": 80, "consistency": 80, "aesthetic": 80}
        )

    def generate_image(self, model, prompt, *, seed, settings):
        with self._lock:
            self.generate_calls.append({"model": model, "prompt": prompt, "seed": seed})
        if self.fail_generate(model, prompt, seed):
            raise ProviderError("boom", provider="fake", model=model)
        return png_bytes()

    def edit_image(self, model, prompt, image_bytes, *, settings):
        with self._lock:
            self.edit_calls.append({"model": model, "prompt": prompt})
        if self.fail_edit(model, prompt):
            raise ProviderError("edit failed", provider="fake", model=model)
        return png_bytes((30, 30, 30))

    def critique_image(self, model, prompt, image_bytes, mime_type, *, settings):
        with self._lock:
            self.critique_calls.append({"model": model, "prompt": prompt})
        return self.critique_for(image_bytes, prompt)


@pytest.fixture
def fake_adapter():
    adapter = FakeAdapter()
    ProviderRegistry.register("fake", adapter)
    yield adapter
    ProviderRegistry.unregister("fake")


@pytest.fixture
def cfg(tmp_path):
    app_cfg, warnings = AppConfig.from_dict(
        {
            "run": {
                "out_dir": str(tmp_path / "runs"),
                "default_concurrency": 3,
                "max_retries": 1,
                "retry": {"min_wait_seconds": 0, "max_wait_seconds": 0},
            },
            "models": {
                "default": "fake:image",
                "aliases": {"fakes": ["fake:image", "fake:critic"]},
                "capabilities": {"image": ["fake:image", "fake:image-2"], "vision": ["fake:critic"]},
            },
            "critique": {"model": "fake:critic"},
        }
    )
    assert warnings == []
    return app_cfg


@pytest.fixture
def spec():
    return parse_spec_text(SPEC_TEXT)


@pytest.fixture
def run_ctx(cfg):
    with open_run(cfg, run_id="test-run") as ctx:
        yield ctx
