"""
名稱正規化 — 元件名稱 → icon 識別字

順序：去掉開頭的 deprecation marker → 只留最後一段路徑 → 小寫 → 去空白
例：
  "home"                  → "home"
  "Material/home"         → "home"
  "deprecated_home"       → "home"
  "Icons/deprecated_Home" → "home"
"""

from dataclasses import dataclass
from typing import Optional

DEPRECATION_MARKER = "deprecated_"


@dataclass
class NamingConfig:
    """命名規則設定."""
    separator: str = "/"
    deprecation_marker: str = DEPRECATION_MARKER


class NameNormalizer:
    """將任意既有元件名稱轉成 icon 識別字."""

    def __init__(self, config: Optional[NamingConfig] = None):
        self.config = config or NamingConfig()

    def normalize(self, raw_name: str) -> str:
        name = self._strip_markers(raw_name)
        name = name.split(self.config.separator)[-1]
        # 前綴後面才出現 marker（Icons/deprecated_home）也要去掉
        name = self._strip_markers(name)
        return name.lower().strip()

    def _strip_markers(self, name: str) -> str:
        name = name.strip()
        while self._has_marker(name):
            name = name[len(self.config.deprecation_marker):].strip()
        return name

    def _has_marker(self, name: str) -> bool:
        # 不分大小寫；is_deprecated 與 normalize 共用同一判斷
        marker = self.config.deprecation_marker.lower()
        return bool(marker) and name.lower().startswith(marker)

    def is_deprecated(self, raw_name: str) -> bool:
        return self._has_marker(raw_name.strip())

    def mark_deprecated(self, raw_name: str) -> str:
        """加上 marker；已標記者原樣回傳（不會變成 deprecated_deprecated_x）."""
        if self.is_deprecated(raw_name):
            return raw_name
        return f"{self.config.deprecation_marker}{raw_name}"


_default = NameNormalizer()


def normalize(raw_name: str) -> str:
    return _default.normalize(raw_name)


def is_deprecated(raw_name: str) -> bool:
    return _default.is_deprecated(raw_name)


def mark_deprecated(raw_name: str) -> str:
    return _default.mark_deprecated(raw_name)
