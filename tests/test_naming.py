"""
名稱正規化單元測試
"""
import pytest

from iconsync.naming import NameNormalizer, NamingConfig, is_deprecated, mark_deprecated, normalize


@pytest.mark.parametrize("raw,expected", [
    ("home", "home"),
    ("Home", "home"),
    ("  home  ", "home"),
    ("Material/home", "home"),
    ("Icons/Navigation/arrow_back", "arrow_back"),
    ("deprecated_home", "home"),
    ("Icons/deprecated_Home", "home"),
    ("deprecated_Icons/home", "home"),
])
def test_normalize(raw, expected):
    assert normalize(raw) == expected


@pytest.mark.parametrize("raw", [
    "home",
    "Deprecated_Home",
    "deprecated_deprecated_home",
    "a/deprecated_deprecated_b",
    "Icons/ deprecated_x ",
    "deprecated_",
    "",
    "/",
    "a/b/",
    "DEPRECATED_deprecated_Mixed/Case",
])
def test_normalize_is_idempotent(raw):
    once = normalize(raw)
    assert normalize(once) == once


def test_is_deprecated_only_checks_prefix():
    assert is_deprecated("deprecated_home")
    assert is_deprecated("  deprecated_home")
    assert not is_deprecated("home")
    assert not is_deprecated("Icons/deprecated_home")


def test_mark_deprecated_never_doubles_marker():
    assert mark_deprecated("menu") == "deprecated_menu"
    assert mark_deprecated("deprecated_menu") == "deprecated_menu"
    assert mark_deprecated(mark_deprecated("menu")) == "deprecated_menu"


def test_marked_name_normalizes_to_same_identifier():
    for raw in ("menu", "Icons/Menu", "MENU"):
        assert normalize(mark_deprecated(raw)) == normalize(raw)


def test_custom_config():
    normalizer = NameNormalizer(NamingConfig(separator=".", deprecation_marker="old-"))
    assert normalizer.normalize("icons.old-Home") == "home"
    assert normalizer.mark_deprecated("home") == "old-home"
    assert normalizer.is_deprecated("old-home")


def test_empty_marker_does_not_loop():
    normalizer = NameNormalizer(NamingConfig(deprecation_marker=""))
    assert normalizer.normalize("Icons/Home") == "home"


def test_marker_case_is_one_rule_everywhere():
    """大小寫不同的 marker：normalize、is_deprecated、mark_deprecated 判斷一致"""
    assert normalize("Deprecated_menu") == "menu"
    assert is_deprecated("Deprecated_menu")
    assert is_deprecated("DEPRECATED_menu")
    assert mark_deprecated("Deprecated_menu") == "Deprecated_menu"


def test_empty_marker_never_counts_as_deprecated():
    normalizer = NameNormalizer(NamingConfig(deprecation_marker=""))
    assert not normalizer.is_deprecated("home")
