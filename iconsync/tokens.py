"""
設計 token 解析快取

resolve(property_path, token_name) 的順序：
  1. 外部 library token（權威來源）
  2. 目前頁面的 local token（備援，可能落後於 library）
  3. 未綁定 → 呼叫端套用靜態值並發出警告

成功的解析以 token 名稱記憶到本次 run 結束；clear() 可在 run 中途清空
（例如 library 更新後）。綁定以 property path 為單位，重複綁定同一個 token
不會產生第二個綁定。
"""

import re
from dataclasses import dataclass
from typing import Any, Optional

from .document import LIBRARY, LOCAL, HostCapabilities, TokenInfo, TokenStore
from .errors import BindingError
from .reporting import Reporter

EXACT_MATCH_SCORE = 1000.0
LEAF_MATCH_SCORE = 100.0

# 特例：舊 library 以 camelCase 存的名稱
_LEAF_ALIASES = {
    ("surface-bright", "surfaceBright"),
    ("on-background", "onBackground"),
    ("small", "smallBorderRadius"),
}


@dataclass(frozen=True)
class ResolutionCacheEntry:
    token_name: str
    handle: str
    provenance: str
    resolved_name: str = ""


@dataclass(frozen=True)
class TokenResolution:
    property_path: str
    token_name: str
    entry: Optional[ResolutionCacheEntry] = None

    @property
    def bound(self) -> bool:
        return self.entry is not None

    @property
    def handle(self) -> Optional[str]:
        return self.entry.handle if self.entry else None

    @property
    def provenance(self) -> Optional[str]:
        return self.entry.provenance if self.entry else None


@dataclass(frozen=True)
class StyleRule:
    """family 外框的一個樣式屬性：優先綁 token，失敗時用靜態值."""
    property_path: str
    token_name: str
    fallback: Any


def hex_to_rgb(hex_color: str) -> dict:
    match = re.fullmatch(r"#?([0-9a-fA-F]{2})([0-9a-fA-F]{2})([0-9a-fA-F]{2})", hex_color.strip())
    if not match:
        raise ValueError(f"Invalid hex color: {hex_color}")
    r, g, b = (int(part, 16) / 255 for part in match.groups())
    return {"r": round(r, 4), "g": round(g, 4), "b": round(b, 4)}


DEFAULT_STYLE_RULES = (
    StyleRule("cornerRadius", "Radius/small", 12),
    StyleRule("fills/0/color", "Schemes/surface-bright", hex_to_rgb("#FAF9FD")),
    StyleRule("strokes/0/color", "Schemes/primary", hex_to_rgb("#9747FF")),
)


def _squash(name: str) -> str:
    return re.sub(r"[-_]", "", name.lower())


def _is_leaf_match(var_leaf: str, target_leaf: str) -> bool:
    if var_leaf == target_leaf or var_leaf.lower() == target_leaf.lower():
        return True
    if _squash(var_leaf) == _squash(target_leaf):
        return True
    return (target_leaf, var_leaf) in _LEAF_ALIASES


def match_score(variable_name: str, target_name: str) -> float:
    """名稱相符分數；-1 表示不相符。完全相同 1000，葉節點相符 100 起跳，
    每個共同的上層路徑段依距離葉節點遠近加 10 / (distance + 1)."""
    if variable_name == target_name:
        return EXACT_MATCH_SCORE
    var_segments = variable_name.split("/")
    target_segments = target_name.split("/")
    if not _is_leaf_match(var_segments[-1], target_segments[-1]):
        return -1.0
    score = LEAF_MATCH_SCORE
    for i, target_seg in enumerate(target_segments[:-1]):
        for j, var_seg in enumerate(var_segments[:-1]):
            if var_seg.lower() == target_seg.lower():
                distance = min(len(target_segments) - 1 - i, len(var_segments) - 1 - j)
                score += 10 * (1 / (distance + 1))
    return score


def best_match(tokens: list[TokenInfo], target_name: str) -> Optional[TokenInfo]:
    best, best_score = None, -1.0
    for token in tokens:
        score = match_score(token.name, target_name)
        if score >= 0 and score > best_score:
            best, best_score = token, score
    return best


class TokenResolver:
    """library → local → 未綁定；結果以 token 名稱快取到 run 結束."""

    def __init__(
        self,
        store: TokenStore,
        capabilities: Optional[HostCapabilities] = None,
        reporter: Optional[Reporter] = None,
    ):
        self.store = store
        self.capabilities = capabilities or HostCapabilities()
        self.reporter = reporter or Reporter()
        self._cache: dict[str, ResolutionCacheEntry] = {}
        self._listings: dict[str, list[TokenInfo]] = {}

    @property
    def cache(self) -> dict[str, ResolutionCacheEntry]:
        return dict(self._cache)

    def clear(self) -> None:
        self._cache.clear()
        self._listings.clear()
        self.reporter.debug("Token resolution cache cleared")

    async def _tokens(self, scope: str) -> list[TokenInfo]:
        if scope not in self._listings:
            self._listings[scope] = await self.store.list_tokens(scope)
        return self._listings[scope]

    async def _lookup(self, scope: str, token_name: str) -> Optional[ResolutionCacheEntry]:
        try:
            match = best_match(await self._tokens(scope), token_name)
        except Exception as e:
            self.reporter.warning(f"Could not list {scope} tokens: {e}")
            return None
        if match is None:
            return None
        return ResolutionCacheEntry(token_name, match.handle, scope, match.name)

    async def resolve(self, property_path: str, token_name: str) -> TokenResolution:
        cached = self._cache.get(token_name)
        if cached is not None:
            self.reporter.debug(f"Using cached token: {token_name} ({cached.provenance})")
            return TokenResolution(property_path, token_name, cached)

        entry = None
        if self.capabilities.supports_library_tokens:
            entry = await self._lookup(LIBRARY, token_name)
        if entry is None and self.capabilities.supports_local_tokens:
            entry = await self._lookup(LOCAL, token_name)
        if entry is None:
            return TokenResolution(property_path, token_name)

        self._cache[token_name] = entry
        self.reporter.debug(f"✓ Resolved {token_name} from {entry.provenance} ({entry.resolved_name})")
        return TokenResolution(property_path, token_name, entry)

    async def bind(self, node_id: str, property_path: str, token_name: str) -> TokenResolution:
        """解析後綁到節點；已綁同一個 handle 時不重複寫入."""
        resolution = await self.resolve(property_path, token_name)
        if not resolution.bound:
            return resolution
        current = await self.store.bound_token(node_id, property_path)
        if current != resolution.handle:
            await self.store.bind(node_id, property_path, resolution.handle)
        return resolution


async def apply_family_style(
    resolver: TokenResolver,
    node_id: str,
    rules=DEFAULT_STYLE_RULES,
) -> tuple[int, int]:
    """對 family 外框套用樣式；回傳 (綁定數, 靜態備援數)。

    token 失敗一律降級成靜態值 + 警告，不會讓元件沒有樣式，也不會往上拋。
    """
    bound = fallbacks = 0
    for rule in rules:
        try:
            resolution = await resolver.bind(node_id, rule.property_path, rule.token_name)
        except Exception as e:
            resolver.reporter.warning(BindingError(rule.property_path, rule.token_name, str(e)).message)
            resolution = TokenResolution(rule.property_path, rule.token_name)
        if resolution.bound:
            bound += 1
            continue
        resolver.reporter.warning(
            f"Token {rule.token_name} not found; using static {rule.property_path}={rule.fallback}"
        )
        await resolver.store.apply_static(node_id, rule.property_path, rule.fallback)
        fallbacks += 1
    return bound, fallbacks
