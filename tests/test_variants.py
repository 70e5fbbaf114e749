"""
Variant 模型單元測試
"""
import pytest

from iconsync.variants import (
    VariantAxes,
    VariantSpec,
    count,
    expand,
    find_best_default_variant,
    parse_variant_name,
    variant_name,
)


def test_full_cross_product_is_504():
    specs = expand()
    assert len(specs) == 504
    assert count() == 504
    assert len(set(specs)) == 504


def test_expansion_order_is_fixed():
    specs = expand()
    assert specs[0] == VariantSpec("rounded", 100, 0, -25, 20)
    assert specs[1] == VariantSpec("rounded", 100, 0, -25, 24)
    assert specs[4] == VariantSpec("rounded", 100, 0, 0, 20)
    assert specs[-1] == VariantSpec("sharp", 700, 1, 200, 48)
    # style 是最外層
    assert [s.style for s in specs[::168]] == ["rounded", "outlined", "sharp"]


def test_subset_count_matches_set_sizes():
    axes = VariantAxes(styles=["rounded"], weights=[300, 400], fills=[0, 1], grades=[0], optical_sizes=[24])
    assert axes.expected_count == 4
    assert len(axes.expand()) == 4


def test_duplicate_axis_values_are_ignored():
    assert count(styles=["rounded", "rounded"]) == 168
    assert len(expand(styles=["rounded", "rounded"])) == 168


def test_axes_validate():
    assert VariantAxes().validate() == []
    problems = VariantAxes(weights=[450], styles=[]).validate()
    assert "styles is empty" in problems
    assert any("450" in p for p in problems)


# ─── 命名 ────────────────────────────────────────────────────────────────────

def test_variant_name_format():
    spec = VariantSpec("rounded", 400, 0, 0, 24)
    assert variant_name(spec) == "Style=Rounded, Weight=400, Fill=Off, Grade=Normal, Optical size=24dp"
    assert VariantSpec("sharp", 700, 1, -25, 48).name == \
        "Style=Sharp, Weight=700, Fill=On, Grade=Dark theme, Optical size=48dp"


def test_every_name_parses_back():
    for spec in expand():
        assert parse_variant_name(spec.name) == spec


def test_parse_numeric_form():
    spec = parse_variant_name("style=outlined, weight=300, fill=1, grade=-25, size=20")
    assert spec == VariantSpec("outlined", 300, 1, -25, 20)


@pytest.mark.parametrize("name", [
    "",
    "Rectangle 1",
    "Style=Rounded, Weight=heavy, Fill=Off, Grade=Normal, Optical size=24dp",
    "Weight=400, Fill=Off, Grade=Normal, Optical size=24dp",
])
def test_parse_rejects_garbage(name):
    assert parse_variant_name(name) is None


# ─── 預設 variant ────────────────────────────────────────────────────────────

def test_best_default_prefers_rounded_400_off_normal_24():
    names = [s.name for s in expand()]
    assert find_best_default_variant(names) == \
        "Style=Rounded, Weight=400, Fill=Off, Grade=Normal, Optical size=24dp"


def test_best_default_uses_next_preference_when_missing():
    names = [s.name for s in expand(styles=["outlined", "sharp"], weights=[300, 500])]
    assert find_best_default_variant(names) == \
        "Style=Sharp, Weight=300, Fill=Off, Grade=Normal, Optical size=24dp"


def test_best_default_relaxes_trailing_criteria():
    names = [
        "Style=Rounded, Weight=400, Fill=On, Grade=Emphasis, Optical size=48dp",
        "Style=Sharp, Weight=400, Fill=Off, Grade=Normal, Optical size=24dp",
    ]
    # rounded 與 400 都存在，但沒有同時 Fill=Off 的組合 → 退回只比 style + weight
    assert find_best_default_variant(names) == names[0]


def test_best_default_empty():
    assert find_best_default_variant([]) is None
    assert find_best_default_variant(["not a variant"]) is None
