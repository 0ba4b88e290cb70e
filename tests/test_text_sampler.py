import numpy as np
import pytest

from treemorph_app import text_sampler
from treemorph_app.text_sampler import (
    BBOX_PADDING_PX,
    MIN_SAMPLE_COUNT,
    FontCandidate,
    TextRasterRequest,
    add_text_thickness,
    foreground_bbox,
    foreground_mask,
    generate_text_points,
    pixels_to_points,
    sample_text_mask,
    text_bounds,
)


def _block_mask(h=200, w=400, y0=50, y1=150, x0=100, x1=300):
    mask = np.zeros((h, w), dtype=bool)
    mask[y0:y1, x0:x1] = True
    return mask


# ---------------------------------------------------------------------------
# Mask scanning (no Qt needed)
# ---------------------------------------------------------------------------


def test_foreground_mask_threshold():
    rgba = np.full((2, 3, 4), 255, dtype=np.uint8)
    rgba[0, 0] = (0, 0, 0, 255)  # black, opaque
    rgba[0, 1] = (249, 255, 255, 255)  # one channel just below the threshold
    rgba[0, 2] = (0, 0, 0, 100)  # dark but too transparent
    mask = foreground_mask(rgba)
    assert mask.tolist() == [[True, True, False], [False, False, False]]


def test_foreground_bbox_padding_and_clamp():
    mask = _block_mask()
    assert foreground_bbox(mask) == (
        100 - BBOX_PADDING_PX,
        50 - BBOX_PADDING_PX,
        299 + BBOX_PADDING_PX,
        149 + BBOX_PADDING_PX,
    )
    edge = np.zeros((20, 20), dtype=bool)
    edge[0, 0] = True
    assert foreground_bbox(edge) == (0, 0, BBOX_PADDING_PX, BBOX_PADDING_PX)


def test_foreground_bbox_empty():
    assert foreground_bbox(np.zeros((10, 10), dtype=bool)) is None


def test_sample_text_mask_stride():
    mask = _block_mask()
    xs, ys = sample_text_mask(mask, 0.5)
    assert xs.size > 0
    assert np.all(mask[ys, xs])
    # stride 2 inside the block keeps roughly a quarter of the pixels
    assert xs.size == pytest.approx(mask.sum() / 4, rel=0.05)


def test_sample_text_mask_resamples_sparse_masks():
    mask = np.zeros((100, 100), dtype=bool)
    mask[40:52, 40:52] = True  # 144 pixels
    # stride 4 -> 9 pixels, below the floor -> resample at stride 2
    xs, _ = sample_text_mask(mask, 0.25)
    assert xs.size == 36
    assert xs.size < MIN_SAMPLE_COUNT


def test_sample_text_mask_empty():
    xs, ys = sample_text_mask(np.zeros((10, 10), dtype=bool), 0.6)
    assert xs.size == 0 and ys.size == 0


def test_pixels_to_points_mapping_and_depth():
    request = TextRasterRequest(text="x", canvas_width=200, canvas_height=100, depth=0.5)
    xs = np.array([100, 0, 199])
    ys = np.array([50, 0, 99])
    pts = pixels_to_points(xs, ys, request)
    assert pts.shape == (3, 3)
    np.testing.assert_allclose(pts[0, :2], (0.0, request.y_offset))
    assert pts[1, 0] < 0.0 < pts[2, 0]
    assert pts[1, 1] > pts[2, 1]
    assert np.all(np.abs(pts[:, 2]) <= 0.25)
    np.testing.assert_array_equal(pts, pixels_to_points(xs, ys, request))


def test_add_text_thickness_layers():
    flat = np.array([[0.0, 0.0, 0.0], [1.0, 1.0, 0.0]])
    thick = add_text_thickness(flat, thickness=0.2, layers=3)
    assert thick.shape == (6, 3)
    np.testing.assert_allclose(thick[:3, 2], (-0.1, 0.0, 0.1))
    np.testing.assert_allclose(thick[:3, :2], np.repeat(flat[:1, :2], 3, axis=0))
    assert add_text_thickness(flat, layers=1).shape == (2, 3)
    assert add_text_thickness(np.zeros((0, 3))).shape == (0, 3)


def test_text_bounds():
    pts = np.array([[-1.0, 2.0, 0.0], [3.0, 4.0, 0.5]])
    b = text_bounds(pts, padding=0.5)
    assert (b.min_x, b.max_x, b.min_y, b.max_y) == (-1.5, 3.5, 1.5, 4.5)
    assert b.center == (1.0, 3.0, 0.25)
    assert b.contains(0.0, 3.0, 0.0)
    assert not b.contains(5.0, 3.0, 0.0)
    assert text_bounds(np.zeros((0, 3))) is None


# ---------------------------------------------------------------------------
# Rasterization (Qt)
# ---------------------------------------------------------------------------


def _request(family, text="Happy Birthday"):
    return TextRasterRequest(
        text=text,
        font_candidates=(FontCandidate(family, 150, True),),
        depth=0.5,
        point_density=0.6,
    )


def test_generate_text_points_non_empty(installed_family, fresh_text_cache):
    pts = generate_text_points(_request(installed_family))
    assert pts.ndim == 2 and pts.shape[1] == 3
    assert len(pts) > MIN_SAMPLE_COUNT
    assert np.all(np.abs(pts[:, 2]) <= 0.25 + 1e-9)
    b = text_bounds(pts)
    assert b.width > 0.0 and b.height > 0.0


def test_generate_text_points_deterministic(installed_family, fresh_text_cache):
    request = _request(installed_family)
    first = generate_text_points(request)
    text_sampler.clear_text_point_cache()
    second = generate_text_points(request)
    np.testing.assert_array_equal(first, second)


def test_generate_text_points_returns_copies(installed_family, fresh_text_cache):
    request = _request(installed_family)
    first = generate_text_points(request)
    first[:] = 0.0
    again = generate_text_points(request)
    assert np.abs(again).sum() > 0.0


def test_whitespace_text_yields_empty_array(installed_family, fresh_text_cache):
    pts = generate_text_points(_request(installed_family, text="   "))
    assert pts.shape == (0, 3)


def test_multiline_text_is_taller(installed_family, fresh_text_cache):
    one = text_bounds(generate_text_points(_request(installed_family, text="Happy")))
    two = text_bounds(generate_text_points(_request(installed_family, text="Happy\nHappy")))
    assert two.height > one.height


def test_fallback_font_entry_dropped_on_fonts_ready(qapp, fresh_text_cache):
    request = TextRasterRequest(
        text="Happy Birthday",
        font_candidates=(FontCandidate("No Such Family Xyz", 150, True),),
    )
    generate_text_points(request)
    key = (request, False)
    assert text_sampler._TEXT_POINT_CACHE[key].provisional

    before = text_sampler.font_generation()
    assert text_sampler.notify_fonts_ready() == before + 1
    assert key not in text_sampler._TEXT_POINT_CACHE


def test_applied_font_entry_survives_fonts_ready(installed_family, fresh_text_cache):
    request = _request(installed_family)
    generate_text_points(request)
    text_sampler.notify_fonts_ready()
    assert (request, True) in text_sampler._TEXT_POINT_CACHE


def test_load_custom_fonts_missing_dir(qapp, tmp_path):
    assert text_sampler.load_custom_fonts(tmp_path / "nope") == []


def test_load_custom_fonts_skips_broken_file(qapp, tmp_path):
    (tmp_path / "broken.ttf").write_bytes(b"not a font")
    before = text_sampler.font_generation()
    assert text_sampler.load_custom_fonts(tmp_path) == []
    assert text_sampler.font_generation() == before


def _two_families(qapp):
    usable = []
    for family in text_sampler.QFontDatabase.families():
        if text_sampler.font_applied(text_sampler.build_qfont(FontCandidate(family)), family):
            usable.append(family)
        if len(usable) == 2:
            return usable
    pytest.skip("needs two installed font families")


def test_fallback_family_never_counts_as_applied(qapp):
    requested, fallback = _two_families(qapp)
    font, applied = text_sampler.resolve_font((FontCandidate("No Such Family Xyz"),), fallback)
    assert applied is False
    assert text_sampler.QFontInfo(font).family().lower() == fallback.lower()
    font, applied = text_sampler.resolve_font((FontCandidate(requested),), fallback)
    assert applied is True


def test_points_resampled_with_requested_font_once_it_loads(qapp, fresh_text_cache, monkeypatch):
    requested, fallback = _two_families(qapp)
    request = TextRasterRequest(
        text="Happy Birthday",
        font_candidates=(FontCandidate(requested, 150, True),),
        fallback_family=fallback,
    )
    real_font_applied = text_sampler.font_applied
    missing = {requested.lower()}

    def font_applied(font, family):
        if family.strip().lower() in missing:
            return False
        return real_font_applied(font, family)

    monkeypatch.setattr(text_sampler, "font_applied", font_applied)

    before = generate_text_points(request)
    assert text_sampler._TEXT_POINT_CACHE[(request, False)].provisional

    # the requested family finishes loading
    missing.clear()
    text_sampler.notify_fonts_ready()
    after = generate_text_points(request)
    assert (request, False) not in text_sampler._TEXT_POINT_CACHE
    assert not text_sampler._TEXT_POINT_CACHE[(request, True)].provisional

    text_sampler.clear_text_point_cache()
    fresh = generate_text_points(request)
    np.testing.assert_array_equal(after, fresh)
    assert before.shape != fresh.shape or not np.array_equal(before, fresh)
