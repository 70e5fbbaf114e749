"""
Variant 模型 — Material Symbols 固定五軸

style × weight × fill × grade × optical size = 3 × 7 × 2 × 3 × 4 = 504

展開順序固定（style → weight → fill → grade → optical size），
讓「第 312 個 variant」在每次 run 之間都指向同一個組合。
"""

from dataclasses import dataclass, field
from itertools import product
from typing import Iterable, Optional, Sequence

STYLES = ("rounded", "outlined", "sharp")
WEIGHTS = (100, 200, 300, 400, 500, 600, 700)
FILLS = (0, 1)
GRADES = (-25, 0, 200)
OPTICAL_SIZES = (20, 24, 40, 48)

_GRADE_LABELS = {-25: "Dark theme", 0: "Normal", 200: "Emphasis"}
_GRADE_VALUES = {v: k for k, v in _GRADE_LABELS.items()}
_FILL_LABELS = {0: "Off", 1: "On"}

# 預設 variant 的偏好順序，越前面越優先
VARIANT_PREFERENCES = {
    "style": ["rounded", "sharp", "outlined"],
    "weight": [400, 300, 500, 200, 600, 100, 700],
    "fill": [0, 1],
    "grade": [0, -25, 200],
    "optical_size": [24, 40, 20, 48],
}


@dataclass(frozen=True)
class VariantSpec:
    """單一 variant 組合（不可變，可當 dict key）."""
    style: str
    weight: int
    fill: int
    grade: int
    optical_size: int

    @property
    def name(self) -> str:
        return variant_name(self)


def _unique(values: Iterable) -> tuple:
    return tuple(dict.fromkeys(values))


def expand(
    styles: Sequence[str] = STYLES,
    weights: Sequence[int] = WEIGHTS,
    fills: Sequence[int] = FILLS,
    grades: Sequence[int] = GRADES,
    optical_sizes: Sequence[int] = OPTICAL_SIZES,
) -> list[VariantSpec]:
    """依固定軸順序展開完整 cross-product."""
    return [
        VariantSpec(style, weight, fill, grade, size)
        for style, weight, fill, grade, size in product(
            _unique(styles), _unique(weights), _unique(fills), _unique(grades), _unique(optical_sizes)
        )
    ]


def count(
    styles: Sequence[str] = STYLES,
    weights: Sequence[int] = WEIGHTS,
    fills: Sequence[int] = FILLS,
    grades: Sequence[int] = GRADES,
    optical_sizes: Sequence[int] = OPTICAL_SIZES,
) -> int:
    n = 1
    for axis in (styles, weights, fills, grades, optical_sizes):
        n *= len(_unique(axis))
    return n


@dataclass
class VariantAxes:
    """一次 run 要產生的軸子集；預設為完整 504."""
    styles: list = field(default_factory=lambda: list(STYLES))
    weights: list = field(default_factory=lambda: list(WEIGHTS))
    fills: list = field(default_factory=lambda: list(FILLS))
    grades: list = field(default_factory=lambda: list(GRADES))
    optical_sizes: list = field(default_factory=lambda: list(OPTICAL_SIZES))

    def expand(self) -> list[VariantSpec]:
        return expand(self.styles, self.weights, self.fills, self.grades, self.optical_sizes)

    @property
    def expected_count(self) -> int:
        return count(self.styles, self.weights, self.fills, self.grades, self.optical_sizes)

    def validate(self) -> list[str]:
        """回傳不在已知軸值內的項目（空 list 表示合法）."""
        problems = []
        known = {
            "styles": STYLES,
            "weights": WEIGHTS,
            "fills": FILLS,
            "grades": GRADES,
            "optical_sizes": OPTICAL_SIZES,
        }
        for axis, allowed in known.items():
            values = getattr(self, axis)
            if not values:
                problems.append(f"{axis} is empty")
            for value in values:
                if value not in allowed:
                    problems.append(f"{axis}: unknown value {value!r}")
        return problems


# ─── Figma variant 命名 ──────────────────────────────────────────────────────

def variant_name(spec: VariantSpec) -> str:
    """Style=Rounded, Weight=400, Fill=Off, Grade=Normal, Optical size=24dp"""
    return (
        f"Style={spec.style.capitalize()}, "
        f"Weight={spec.weight}, "
        f"Fill={_FILL_LABELS.get(spec.fill, str(spec.fill))}, "
        f"Grade={_GRADE_LABELS.get(spec.grade, str(spec.grade))}, "
        f"Optical size={spec.optical_size}dp"
    )


def parse_variant_name(name: str) -> Optional[VariantSpec]:
    """解析 variant 名稱；同時接受顯示格式與數值格式（fill=1, grade=-25, size=24）."""
    props = {}
    for pair in name.split(","):
        if "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        key = key.strip().lower().replace(" ", "")
        value = value.strip()
        if key and value:
            props[key] = value

    style = props.get("style", "").lower()
    fill_raw = props.get("fill")
    grade_raw = props.get("grade")
    size_raw = props.get("opticalsize") or props.get("size")
    try:
        weight = int(props.get("weight", ""))
        if fill_raw in ("On", "true"):
            fill = 1
        elif fill_raw in ("Off", "false"):
            fill = 0
        else:
            fill = int(fill_raw or "")
        grade = _GRADE_VALUES[grade_raw] if grade_raw in _GRADE_VALUES else int(grade_raw or "")
        optical_size = int((size_raw or "").replace("dp", "").replace("px", ""))
    except ValueError:
        return None
    if not style:
        return None
    return VariantSpec(style, weight, fill, grade, optical_size)


def find_best_default_variant(names: Iterable[str], preferences: Optional[dict] = None) -> Optional[str]:
    """依偏好順序挑選預設 variant；找不到完全符合時逐步放寬條件."""
    prefs = preferences or VARIANT_PREFERENCES
    parsed = [(n, parse_variant_name(n)) for n in names]
    parsed = [(n, spec) for n, spec in parsed if spec is not None]
    if not parsed:
        return None

    best = {}
    for attr in ("style", "weight", "fill", "grade", "optical_size"):
        available = list(dict.fromkeys(getattr(spec, attr) for _, spec in parsed))
        best[attr] = next((v for v in prefs[attr] if v in available), available[0])

    # style > weight > fill > grade > optical size，從最嚴格開始逐一放寬尾端條件
    attrs = ["style", "weight", "fill", "grade", "optical_size"]
    for keep in range(len(attrs), 0, -1):
        wanted = attrs[:keep]
        for n, spec in parsed:
            if all(getattr(spec, a) == best[a] for a in wanted):
                return n
    return parsed[0][0]
