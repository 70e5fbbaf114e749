"""設定檔載入與基本驗證."""

import json
import os
from dataclasses import replace
from pathlib import Path
from typing import Any

from .document import HostCapabilities
from .orchestrator import OrchestratorOptions
from .planner import DEFAULT_PAGE_SIZE, STRATEGIES
from .tokens import DEFAULT_STYLE_RULES, hex_to_rgb
from .variants import FILLS, GRADES, OPTICAL_SIZES, STYLES, WEIGHTS, VariantAxes

DEFAULT_CONFIG_PATH = "icon-sync.config.json"
DEFAULT_SNAPSHOT_DIR = ".icon-sync"

# 已知有效的頂層欄位
_KNOWN_TOP_KEYS = {"upstream", "variants", "planner", "sync", "tokens", "figma", "export"}

# 各區塊已知欄位（用於拼字提示）
_KNOWN_SECTION_KEYS = {
    "upstream": {"owner", "repo", "ref", "token", "localRoot"},
    "variants": {"styles", "weights", "fills", "grades", "opticalSizes"},
    "planner": {"strategy", "pageSize", "pagePrefix"},
    "sync": {"trustVersionMarker", "fetchConcurrency", "maxRetries", "yieldEvery"},
    "tokens": {"library", "local", "fallback"},
    "figma": {"personalAccessToken", "fileKey"},
    "export": {"snapshotDir"},
}

_VARIANT_AXES = {
    "styles": STYLES,
    "weights": WEIGHTS,
    "fills": FILLS,
    "grades": GRADES,
    "opticalSizes": OPTICAL_SIZES,
}

_POSITIVE_INTS = {
    ("planner", "pageSize"),
    ("sync", "fetchConcurrency"),
    ("sync", "yieldEvery"),
}


def _warn(msg: str) -> None:
    print(f"   ⚠️  [config] {msg}")


def validate_config(cfg: dict) -> None:
    """對 config 做基本欄位驗證，印出警告但不拋例外。"""
    if not cfg:
        return

    # 頂層未知欄位
    for key in cfg:
        if key not in _KNOWN_TOP_KEYS:
            known = ", ".join(sorted(_KNOWN_TOP_KEYS))
            _warn(f"未知頂層欄位 '{key}'（已知欄位：{known}）")

    # 各區塊欄位
    for section, known_keys in _KNOWN_SECTION_KEYS.items():
        section_cfg = cfg.get(section, {})
        if not isinstance(section_cfg, dict):
            _warn(f"'{section}' 應為物件，目前是 {type(section_cfg).__name__}")
            continue
        for key in section_cfg:
            if key not in known_keys:
                known = ", ".join(sorted(known_keys))
                _warn(f"[{section}] 未知欄位 '{key}'（已知欄位：{known}）")

    # planner.strategy 值驗證
    strategy = _section(cfg, "planner").get("strategy")
    if strategy and strategy not in STRATEGIES:
        valid = ", ".join(STRATEGIES)
        _warn(f"planner.strategy '{strategy}' 不在已知值中（{valid}）")

    # 數值欄位
    for section, key in sorted(_POSITIVE_INTS):
        val = _section(cfg, section).get(key)
        if val is not None and (not isinstance(val, int) or isinstance(val, bool) or val < 1):
            _warn(f"{section}.{key} 應為正整數，目前是 {val!r}")
    retries = _section(cfg, "sync").get("maxRetries")
    if retries is not None and (not isinstance(retries, int) or retries < 0):
        _warn(f"sync.maxRetries 應為 >= 0 的整數，目前是 {retries!r}")

    # variant 軸的值
    for key, allowed in _VARIANT_AXES.items():
        values = _section(cfg, "variants").get(key)
        if values is None:
            continue
        if not isinstance(values, list) or not values:
            _warn(f"variants.{key} 應為非空陣列")
            continue
        unknown = [v for v in values if v not in allowed]
        if unknown:
            _warn(f"variants.{key} 含未知值 {unknown}（已知值：{list(allowed)}）")

    # localRoot 存在性提示（不強制，可能是 CI 環境）
    local_root = _section(cfg, "upstream").get("localRoot")
    if local_root and not Path(local_root).exists():
        _warn(f"upstream.localRoot '{local_root}' 目錄不存在（watch 時需要）")


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> dict:
    """載入 JSON 設定檔，不存在則回傳空 dict；存在則做基本驗證。"""
    path = Path(config_path)
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        cfg: Any = json.load(f)
    if not isinstance(cfg, dict):
        print(f"   ⚠️  [config] '{config_path}' 格式錯誤，應為 JSON 物件，回傳空設定。")
        return {}
    validate_config(cfg)
    return cfg


def _section(cfg: dict, name: str) -> dict:
    section = cfg.get(name, {})
    return section if isinstance(section, dict) else {}


def figma_token(cfg: dict) -> str:
    return _section(cfg, "figma").get("personalAccessToken") or os.environ.get("FIGMA_TOKEN", "")


def github_token(cfg: dict) -> str:
    return _section(cfg, "upstream").get("token") or os.environ.get("GITHUB_TOKEN", "")


def snapshot_dir(cfg: dict) -> str:
    return _section(cfg, "export").get("snapshotDir") or DEFAULT_SNAPSHOT_DIR


def variant_axes_from_config(cfg: dict) -> VariantAxes:
    """未知的軸值會被濾掉（validate_config 已經警告過）；整軸空掉則用預設值."""
    section = _section(cfg, "variants")
    axes = {}
    for key, field_name in (
        ("styles", "styles"),
        ("weights", "weights"),
        ("fills", "fills"),
        ("grades", "grades"),
        ("opticalSizes", "optical_sizes"),
    ):
        allowed = _VARIANT_AXES[key]
        values = section.get(key)
        kept = [v for v in values if v in allowed] if isinstance(values, list) else []
        axes[field_name] = kept or list(allowed)
    return VariantAxes(**axes)


def orchestrator_options_from_config(cfg: dict) -> OrchestratorOptions:
    planner = _section(cfg, "planner")
    sync = _section(cfg, "sync")
    defaults = OrchestratorOptions()
    strategy = planner.get("strategy")
    return OrchestratorOptions(
        axes=variant_axes_from_config(cfg),
        strategy=strategy if strategy in STRATEGIES else defaults.strategy,
        page_size=_positive(planner.get("pageSize"), DEFAULT_PAGE_SIZE),
        page_prefix=str(planner.get("pagePrefix") or ""),
        trust_version_marker=bool(sync.get("trustVersionMarker", False)),
        fetch_concurrency=_positive(sync.get("fetchConcurrency"), defaults.fetch_concurrency),
        max_retries=_non_negative(sync.get("maxRetries"), defaults.max_retries),
        yield_every=_positive(sync.get("yieldEvery"), defaults.yield_every),
        style_rules=style_rules_from_config(cfg),
    )


def _positive(value: Any, default: int) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and value >= 1:
        return value
    return default


def _non_negative(value: Any, default: int) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return default


def capabilities_from_config(cfg: dict) -> HostCapabilities:
    tokens = _section(cfg, "tokens")
    return HostCapabilities(
        supports_library_tokens=bool(tokens.get("library", True)),
        supports_local_tokens=bool(tokens.get("local", True)),
    )


# tokens.fallback 的 key → family 外框的 property path
_FALLBACK_KEYS = {
    "cornerRadius": "cornerRadius",
    "fill": "fills/0/color",
    "stroke": "strokes/0/color",
}


def style_rules_from_config(cfg: dict) -> tuple:
    """以 tokens.fallback 覆寫靜態備援值；顏色用 #RRGGBB."""
    overrides = _section(cfg, "tokens").get("fallback") or {}
    if not isinstance(overrides, dict):
        _warn("tokens.fallback 應為物件")
        return DEFAULT_STYLE_RULES
    by_path = {}
    for key, value in overrides.items():
        path = _FALLBACK_KEYS.get(key)
        if path is None:
            _warn(f"tokens.fallback 未知欄位 '{key}'（已知欄位：{', '.join(_FALLBACK_KEYS)}）")
            continue
        if isinstance(value, str):
            try:
                value = hex_to_rgb(value)
            except ValueError as e:
                _warn(str(e))
                continue
        by_path[path] = value
    return tuple(
        replace(rule, fallback=by_path[rule.property_path]) if rule.property_path in by_path else rule
        for rule in DEFAULT_STYLE_RULES
    )
