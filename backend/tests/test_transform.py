"""
Transform tests (resize + WEBP encode)
"""

import pytest

from derivative_cache import FitPolicy, TransformError, Variant, render_derivative, render_upload
from conftest import decode, make_image


class TestRenderDerivative:
    """render_derivative tests"""

    def test_cover_crops_to_square(self):
        out = decode(render_derivative(make_image(800, 400), Variant.SMALL, FitPolicy.COVER))
        assert out.format == "WEBP"
        assert out.size == (100, 100)

    def test_cover_does_not_upscale(self):
        """Test: a source smaller than the target keeps its shorter side"""
        out = decode(render_derivative(make_image(200, 150), Variant.LARGE, FitPolicy.COVER))
        assert out.size == (150, 150)

    def test_inside_keeps_aspect_ratio(self):
        out = decode(render_derivative(make_image(1000, 500), Variant.MEDIUM, FitPolicy.INSIDE))
        assert out.size == (300, 150)

    def test_inside_does_not_upscale(self):
        out = decode(render_derivative(make_image(50, 40), Variant.LARGE, FitPolicy.INSIDE))
        assert out.size == (50, 40)

    @pytest.mark.parametrize("fit", list(FitPolicy))
    def test_original_reencodes_without_resize(self, fit):
        out = decode(render_derivative(make_image(320, 240, fmt="JPEG"), Variant.ORIGINAL, fit))
        assert out.format == "WEBP"
        assert out.size == (320, 240)

    def test_alpha_is_preserved(self):
        data = make_image(120, 120, color=(0, 0, 255, 128), mode="RGBA")
        out = decode(render_derivative(data, Variant.SMALL, FitPolicy.COVER))
        assert out.mode == "RGBA"

    def test_palette_image_is_converted(self):
        data = make_image(120, 120, color=3, fmt="GIF", mode="P")
        out = decode(render_derivative(data, Variant.SMALL, FitPolicy.INSIDE))
        assert out.format == "WEBP"

    def test_deterministic(self):
        data = make_image(640, 480)
        assert render_derivative(data, Variant.MEDIUM, FitPolicy.COVER) == render_derivative(
            data, Variant.MEDIUM, FitPolicy.COVER
        )

    @pytest.mark.parametrize("data", [b"", b"not an image", b"<html></html>"])
    def test_undecodable_input(self, data):
        with pytest.raises(TransformError):
            render_derivative(data, Variant.SMALL, FitPolicy.COVER)


class TestRenderUpload:
    """Canonical upload transform tests"""

    def test_avatar_upload_is_400_square(self):
        out = decode(render_upload(make_image(1200, 900), FitPolicy.COVER))
        assert out.format == "WEBP"
        assert out.size == (400, 400)

    def test_avatar_upload_upscales_small_input(self):
        out = decode(render_upload(make_image(64, 64), FitPolicy.COVER))
        assert out.size == (400, 400)

    def test_image_upload_capped_at_800(self):
        out = decode(render_upload(make_image(1600, 1000), FitPolicy.INSIDE))
        assert out.size == (800, 500)

    def test_image_upload_small_input_untouched(self):
        out = decode(render_upload(make_image(300, 200), FitPolicy.INSIDE))
        assert out.size == (300, 200)

    def test_bad_upload(self):
        with pytest.raises(TransformError):
            render_upload(b"garbage bytes", FitPolicy.INSIDE)
