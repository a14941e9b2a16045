from __future__ import annotations

from io import BytesIO

from PIL import Image

from tryon_engine.providers.base import GenerationRequest, ReferenceImage
from tryon_engine.providers.dryrun import DryRunProvider, _scaled
from tryon_engine.providers.google_utils import nearest_gemini_ratio, ratio_dimensions, resolve_image_size_hint


def test_dryrun_renders_a_portrait_png() -> None:
    provider = DryRunProvider()
    request = GenerationRequest(
        prompt="A model in a red dress",
        references=(ReferenceImage(data=b"garment", mime_type="image/png", role="garment"),),
        aspect_ratio="3:4",
        image_size="1K",
    )

    payload = provider.generate(request, "dryrun-image-1")

    assert payload.mime_type == "image/png"
    with Image.open(BytesIO(payload.data)) as image:
        assert image.format == "PNG"
        assert image.size == (384, 512)
    assert provider.calls == [("dryrun-image-1", 1)]


def test_dryrun_output_depends_on_prompt() -> None:
    provider = DryRunProvider(max_edge=64)

    first = provider.generate(GenerationRequest(prompt="linen shirt"), "dryrun-image-1")
    again = provider.generate(GenerationRequest(prompt="linen shirt"), "dryrun-image-1")
    other = provider.generate(GenerationRequest(prompt="wool coat"), "dryrun-image-1")

    assert first.data == again.data
    assert first.data != other.data


def test_scaled_keeps_small_sizes() -> None:
    assert _scaled((300, 400), 512) == (300, 400)
    assert _scaled((1024, 1024), 256) == (256, 256)


def test_ratio_helpers() -> None:
    assert ratio_dimensions("3:4", "2K") == (1536, 2048)
    assert ratio_dimensions("16:9") == (1024, 576)
    assert ratio_dimensions(None) == (768, 1024)
    assert resolve_image_size_hint("2000x3000") == "2K"
    assert resolve_image_size_hint("bogus") == "1K"

    warnings: list[str] = []
    assert nearest_gemini_ratio("3:4", warnings) == "3:4"
    assert nearest_gemini_ratio("1000x1500", warnings) == "2:3"
    assert nearest_gemini_ratio("7:10", warnings) == "2:3"
    assert warnings == ["Gemini aspect ratio snapped to 2:3.", "Gemini aspect ratio snapped to 2:3."]
