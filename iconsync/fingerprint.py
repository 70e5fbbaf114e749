"""
內容指紋 — DJB2（seed 5381，hash * 33 + byte，取 32-bit 無號）

非密碼學用途，只用來判斷 variant 的 SVG 內容是否改變：
指紋相同 → 略過重建；不同 → 重建並覆寫。
"""

import re
from typing import Optional, Union

_MASK_32 = 0xFFFFFFFF

_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")
_BETWEEN_TAGS_RE = re.compile(r">\s+<")


def fingerprint(data: Union[bytes, bytearray, memoryview]) -> int:
    """對已正規化的位元組計算 32-bit 指紋（純函式）."""
    h = 5381
    for byte in bytes(data):
        h = (h * 33 + byte) & _MASK_32
    return h


def format_fingerprint(value: int) -> str:
    """持久化用的字串形式：8 位小寫 hex."""
    return f"{value & _MASK_32:08x}"


def normalize_svg(svg: str) -> str:
    """去註解、壓縮空白、去掉標籤之間的空白，不影響渲染結果."""
    text = _COMMENT_RE.sub("", svg)
    text = _WHITESPACE_RE.sub(" ", text)
    text = _BETWEEN_TAGS_RE.sub("><", text)
    return text.strip()


def fingerprint_svg(svg: str) -> str:
    return format_fingerprint(fingerprint(normalize_svg(svg).encode("utf-8")))


def fingerprints_match(stored: Optional[str], computed: str) -> bool:
    if not stored:
        return False
    return stored.strip().lower() == computed.lower()
