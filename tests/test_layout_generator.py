import numpy as np
import pytest

from treemorph_app.layout_generator import (
    DEFAULT_TEXT_BOUNDS,
    PHOTO_TEXT_PADDING,
    TEXT_REUSE_JITTER,
    CategoryConfig,
    MorphLayout,
    generate_layout,
    photo_ring_positions,
    text_index_mapping,
    text_point_positions,
)
from treemorph_app.text_sampler import text_bounds


def _text_points(n):
    xs = np.linspace(-5.0, 5.0, n)
    return np.stack([xs, np.full(n, 6.0), np.zeros(n)], axis=-1)


def test_layout_has_one_row_per_particle():
    cat = CategoryConfig(name="foliage", count=500)
    layout = generate_layout(cat)
    assert len(layout) == 500
    for arr in (layout.scatter, layout.text, layout.tree, layout.current):
        assert arr.shape == (500, 3)
    assert layout.weight.shape == (500,)
    np.testing.assert_array_equal(layout.current, layout.scatter)
    assert layout.current is not layout.scatter


def test_zero_count_gives_empty_layout():
    layout = generate_layout(CategoryConfig(name="photo", count=0, text_layout="photo_ring"))
    assert len(layout) == 0
    assert layout.current.shape == (0, 3)


def test_scatter_inside_radius():
    layout = generate_layout(CategoryConfig(name="dust", count=2000, scatter_radius=20.0))
    assert np.linalg.norm(layout.scatter, axis=1).max() <= 20.0 + 1e-9


def test_cone_tree_inside_cone_with_jitter():
    cat = CategoryConfig(name="foliage", count=3000, tree_height=8.0, tree_base_radius=2.5, tree_jitter=(0.0, 0.0, 0.0))
    tree = generate_layout(cat).tree
    assert tree[:, 1].min() >= 0.0
    assert tree[:, 1].max() <= 8.0
    radius = np.hypot(tree[:, 0], tree[:, 2])
    expected = 0.15 + (2.5 - 0.15) * (1.0 - tree[:, 1] / 8.0)
    np.testing.assert_allclose(radius, expected, atol=1e-9)


def test_scatter_tree_layout_keeps_cloud():
    layout = generate_layout(CategoryConfig(name="dust", count=100, tree_layout="scatter"))
    np.testing.assert_array_equal(layout.tree, layout.scatter)


def test_same_seed_same_layout():
    cat = CategoryConfig(name="ornament_light", count=200)
    a = generate_layout(cat)
    b = generate_layout(cat)
    np.testing.assert_array_equal(a.scatter, b.scatter)
    np.testing.assert_array_equal(a.tree, b.tree)
    c = generate_layout(CategoryConfig(name="ornament_light", count=200, seed=99))
    assert not np.array_equal(a.scatter, c.scatter)


def test_weight_filled_from_category():
    layout = generate_layout(CategoryConfig(name="ornament_heavy", count=10, weight=3.0))
    np.testing.assert_array_equal(layout.weight, np.full(10, 3.0))


# ---------------------------------------------------------------------------
# Text mapping
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("count, n", [(20000, 3500), (100, 100), (50, 1000), (7, 3)])
def test_index_mapping_monotone_and_in_range(count, n):
    mapping = text_index_mapping(count, n)
    assert mapping.shape == (count,)
    assert mapping.min() >= 0
    assert mapping.max() <= n - 1
    assert np.all(np.diff(mapping) >= 0)


def test_index_mapping_covers_points_when_more_particles():
    mapping = text_index_mapping(1000, 10)
    assert set(mapping.tolist()) == set(range(10))


def test_index_mapping_empty():
    assert text_index_mapping(0, 10).size == 0
    assert text_index_mapping(10, 0).size == 0


def test_text_targets_absent_without_points():
    layout = generate_layout(
        CategoryConfig(name="dust", count=50, text_layout="points"),
        text_points=np.zeros((0, 3)),
    )
    assert not layout.text_mask.any()
    assert layout.text_position(0) is None


def test_text_targets_exact_when_enough_points():
    pts = _text_points(200)
    text, mask = text_point_positions(100, pts)
    assert mask.all()
    np.testing.assert_array_equal(text, pts[text_index_mapping(100, 200)])


def test_reused_text_points_get_small_offsets():
    pts = _text_points(10)
    text, mask = text_point_positions(100, pts)
    assert mask.all()
    base = pts[text_index_mapping(100, 10)]
    delta = np.abs(text - base)
    for axis, span in enumerate(TEXT_REUSE_JITTER):
        assert delta[:, axis].max() <= span / 2 + 1e-12
    # particles sharing one point do not coincide
    assert len(np.unique(np.round(text, 9), axis=0)) > 10


def test_instance_view():
    layout = generate_layout(CategoryConfig(name="dust", count=5, text_layout="points"), _text_points(5))
    inst = layout.instance(2)
    assert inst.text_position == tuple(layout.text[2])
    assert inst.current_position == tuple(layout.scatter[2])
    assert inst.weight == 1.0


# ---------------------------------------------------------------------------
# Photos
# ---------------------------------------------------------------------------


def test_photo_ring_outside_text_bounds():
    pts = _text_points(300)
    photos = photo_ring_positions(24, pts)
    bounds = text_bounds(pts, padding=PHOTO_TEXT_PADDING)
    for x, y, z in photos:
        assert not bounds.contains(x, y, z)


def test_photo_ring_without_text_uses_default_bounds():
    photos = photo_ring_positions(12, None)
    assert photos.shape == (12, 3)
    for x, y, z in photos:
        assert not DEFAULT_TEXT_BOUNDS.contains(x, y, z)


def test_photo_layout_uses_orbit_and_ring():
    cat = CategoryConfig(name="photo", count=8, scatter_radius=12.0, tree_layout="orbit", text_layout="photo_ring")
    layout = generate_layout(cat, _text_points(50))
    assert layout.text_mask.all()
    assert np.all(np.hypot(layout.tree[:, 0], layout.tree[:, 2]) >= cat.tree_base_radius + 2.0 - 1e-9)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "kwargs",
    [
        {"count": -1},
        {"weight": 0.0},
        {"scatter_radius": -2.0},
        {"tree_layout": "spiral"},
        {"text_layout": "letters"},
        {"drift_mode": "perlin"},
    ],
)
def test_invalid_category_rejected(kwargs):
    params = {"name": "bad", "count": 10}
    params.update(kwargs)
    with pytest.raises(ValueError):
        CategoryConfig(**params)


def test_replace_count_keeps_other_fields():
    cat = CategoryConfig(name="photo", count=0, tree_layout="orbit", orbit_speed=0.2)
    bigger = cat.replace_count(6)
    assert bigger.count == 6
    assert bigger.tree_layout == "orbit"
    assert bigger.orbit_speed == 0.2


def test_empty_layout_class():
    assert MorphLayout.empty().count == 0


def test_photo_ring_clears_square_text_block():
    rng = np.random.default_rng(3)
    # a block as wide as it is tall and deep: a single push by the clearance is not enough
    block = rng.uniform(-8.0, 8.0, size=(2000, 3)) + (0.0, 6.0, 0.0)
    bounds = text_bounds(block, padding=PHOTO_TEXT_PADDING)
    photos = photo_ring_positions(48, block)
    for x, y, z in photos:
        assert not bounds.contains(x, y, z)
