"""
內容指紋（DJB2）單元測試
"""
import pytest

from iconsync.fingerprint import (
    fingerprint,
    fingerprint_svg,
    fingerprints_match,
    format_fingerprint,
    normalize_svg,
)


def test_empty_input_is_seed():
    assert fingerprint(b"") == 5381
    assert format_fingerprint(fingerprint(b"")) == "00001505"


def test_known_value():
    # 5381 * 33 + ord("a")
    assert fingerprint(b"a") == 177670


def test_deterministic():
    data = b'<svg viewBox="0 -960 960 960"><path d="M240-200h120v-240h240v240h120v-360L480-740 240-560v360Z"/></svg>'
    assert fingerprint(data) == fingerprint(data)
    assert fingerprint(bytearray(data)) == fingerprint(data)


def test_stays_within_32_bits():
    value = fingerprint(b"x" * 10_000)
    assert 0 <= value <= 0xFFFFFFFF


def test_single_byte_mutation_changes_fingerprint():
    base = bytearray(b"<svg><path d='M0 0h24v24H0z'/></svg>")
    original = fingerprint(base)
    for i in range(len(base)):
        mutated = bytearray(base)
        mutated[i] = (mutated[i] + 1) % 256
        assert fingerprint(mutated) != original, f"byte {i} mutation should change hash"


def test_format_is_eight_lowercase_hex():
    text = format_fingerprint(0xABC)
    assert text == "00000abc"
    assert len(format_fingerprint(0xFFFFFFFF)) == 8


# ─── SVG 正規化 ──────────────────────────────────────────────────────────────

def test_normalize_svg_drops_comments_and_whitespace():
    raw = """
    <svg>
      <!-- generated -->
      <path   d="M0 0"/>
    </svg>
    """
    assert normalize_svg(raw) == '<svg><path d="M0 0"/></svg>'


def test_formatting_only_changes_keep_same_fingerprint():
    a = '<svg><path d="M0 0"/></svg>'
    b = '<svg>\n  <path d="M0 0"/>\n</svg>\n'
    assert fingerprint_svg(a) == fingerprint_svg(b)


def test_content_change_changes_svg_fingerprint():
    assert fingerprint_svg('<svg><path d="M0 0"/></svg>') != fingerprint_svg('<svg><path d="M0 1"/></svg>')


@pytest.mark.parametrize("stored,computed,expected", [
    ("0002b606", "0002b606", True),
    ("0002B606", "0002b606", True),
    (" 0002b606 ", "0002b606", True),
    ("", "0002b606", False),
    (None, "0002b606", False),
    ("00000000", "0002b606", False),
])
def test_fingerprints_match(stored, computed, expected):
    assert fingerprints_match(stored, computed) is expected
