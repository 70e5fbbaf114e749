"""
上游來源測試：檔名規則、codepoints / 分類解析、GitHub（mock session）、本機 checkout、重試
"""
import asyncio
from unittest.mock import MagicMock

import pytest
import requests

from iconsync.errors import FetchError, UpstreamUnavailableError
from iconsync.planner import IconEntry
from iconsync.reporting import CancellationToken
from iconsync.upstream import (
    CODEPOINT_PATHS,
    GitHubIconSource,
    LocalIconSource,
    assign_categories,
    backoff_delay,
    fetch_with_retry,
    is_retryable,
    parse_category_file,
    parse_codepoints,
    variant_filename,
    variant_path,
)
from iconsync.variants import VariantSpec


# ─── 檔名 ────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("spec,expected", [
    (VariantSpec("rounded", 400, 0, 0, 24), "home_24px.svg"),
    (VariantSpec("rounded", 200, 1, -25, 48), "home_wght200gradN25fill1_48px.svg"),
    (VariantSpec("outlined", 400, 1, 0, 24), "home_fill1_24px.svg"),
    (VariantSpec("sharp", 700, 0, 200, 20), "home_wght700grad200_20px.svg"),
])
def test_variant_filename(spec, expected):
    assert variant_filename("home", spec) == expected


def test_variant_path():
    spec = VariantSpec("outlined", 400, 0, 0, 40)
    assert variant_path("search", spec) == "symbols/web/search/materialsymbolsoutlined/search_40px.svg"


def test_parse_codepoints_keeps_order_and_dedupes():
    text = "home e88a\nsearch e8b6\n\nhome e88a\n10k e951\n"
    assert parse_codepoints(text) == ["home", "search", "10k"]


def test_parse_category_file_skips_comments():
    assert parse_category_file("# action\nhome\n\n// old\nsearch \n") == ["home", "search"]


def test_assign_categories_first_category_wins():
    entries = assign_categories(["home", "search", "mystery"], {
        "action": ["home", "search"],
        "places": ["home"],
    })
    assert entries == [IconEntry("home", "action"), IconEntry("search", "action"), IconEntry("mystery", None)]


# ─── GitHub ──────────────────────────────────────────────────────────────────

def fake_response(status_code=200, text="", json_data=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    resp.json.return_value = json_data
    return resp


def fake_session(routes):
    """routes: URL 結尾 → response；其餘回 404."""
    session = MagicMock()

    def get(url, headers=None, timeout=None):
        for suffix, resp in routes.items():
            if url.endswith(suffix):
                return resp
        return fake_response(404)

    session.get.side_effect = get
    return session


def test_icon_list_falls_back_to_later_codepoints_file():
    session = fake_session({
        "font/MaterialIcons-Regular.codepoints": fake_response(text="home e88a\nsearch e8b6\n"),
    })
    source = GitHubIconSource(session=session, with_categories=False)
    icons = asyncio.run(source.fetch_icon_list())
    assert icons == [IconEntry("home"), IconEntry("search")]
    assert session.get.call_count == len(CODEPOINT_PATHS)


def test_icon_list_assigns_categories():
    session = fake_session({
        CODEPOINT_PATHS[0]: fake_response(text="home e88a\nsearch e8b6\nalarm e855\n"),
        "symbols/categories/action.txt": fake_response(text="home\nsearch\n"),
    })
    source = GitHubIconSource(session=session, categories=["action", "alert"])
    icons = asyncio.run(source.fetch_icon_list())
    assert icons == [IconEntry("home", "action"), IconEntry("search", "action"), IconEntry("alarm", None)]


def test_icon_list_unavailable_everywhere():
    source = GitHubIconSource(session=fake_session({}), with_categories=False)
    with pytest.raises(UpstreamUnavailableError):
        asyncio.run(source.fetch_icon_list())


def test_version_marker_is_commit_sha():
    session = fake_session({
        "/repos/google/material-design-icons/commits/master": fake_response(json_data={"sha": "4f2c9a1"}),
    })
    assert asyncio.run(GitHubIconSource(session=session).fetch_version_marker()) == "4f2c9a1"


def test_version_marker_unavailable():
    with pytest.raises(UpstreamUnavailableError):
        asyncio.run(GitHubIconSource(session=fake_session({})).fetch_version_marker())


def test_fetch_variant_uses_raw_url():
    spec = VariantSpec("rounded", 400, 0, 0, 24)
    session = fake_session({
        "/master/symbols/web/home/materialsymbolsrounded/home_24px.svg": fake_response(text="<svg/>"),
    })
    assert asyncio.run(GitHubIconSource(session=session).fetch_variant("home", spec)) == "<svg/>"


def test_fetch_variant_404_is_fetch_error():
    spec = VariantSpec("rounded", 400, 0, 0, 24)
    with pytest.raises(FetchError) as exc:
        asyncio.run(GitHubIconSource(session=fake_session({})).fetch_variant("nope", spec))
    assert exc.value.status_code == 404
    assert not is_retryable(exc.value)


def test_network_error_is_retryable_fetch_error():
    session = MagicMock()
    session.get.side_effect = requests.ConnectionError("reset by peer")
    spec = VariantSpec("rounded", 400, 0, 0, 24)
    with pytest.raises(FetchError) as exc:
        asyncio.run(GitHubIconSource(session=session).fetch_variant("home", spec))
    assert exc.value.status_code is None
    assert is_retryable(exc.value)


def test_token_is_sent_as_bearer():
    session = MagicMock()
    session.headers = {}
    GitHubIconSource(token="ghp_x", session=session)
    assert session.headers["Authorization"] == "Bearer ghp_x"


# ─── 本機 checkout ───────────────────────────────────────────────────────────

def write(root, relative, content):
    path = root.joinpath(*relative.split("/"))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def test_local_source_reads_checkout(tmp_path):
    spec = VariantSpec("rounded", 400, 0, 0, 24)
    write(tmp_path, CODEPOINT_PATHS[0], "home e88a\nstar e838\n")
    write(tmp_path, "symbols/categories/action.txt", "home\n")
    write(tmp_path, variant_path("home", spec), "<svg>home</svg>")
    source = LocalIconSource(str(tmp_path))

    assert asyncio.run(source.fetch_icon_list()) == [IconEntry("home", "action"), IconEntry("star", None)]
    assert asyncio.run(source.fetch_variant("home", spec)) == "<svg>home</svg>"
    with pytest.raises(FetchError):
        asyncio.run(source.fetch_variant("star", spec))


def test_local_marker_from_git_head(tmp_path):
    write(tmp_path, CODEPOINT_PATHS[0], "home e88a\n")
    write(tmp_path, ".git/HEAD", "ref: refs/heads/master\n")
    write(tmp_path, ".git/refs/heads/master", "abc123def\n")
    assert asyncio.run(LocalIconSource(str(tmp_path)).fetch_version_marker()) == "abc123def"


def test_local_marker_without_git_changes_with_content(tmp_path):
    write(tmp_path, CODEPOINT_PATHS[0], "home e88a\n")
    source = LocalIconSource(str(tmp_path))
    first = asyncio.run(source.fetch_version_marker())
    assert first.startswith("local-")

    write(tmp_path, CODEPOINT_PATHS[0], "home e88a\nstar e838\n")
    assert asyncio.run(source.fetch_version_marker()) != first


def test_local_source_without_codepoints(tmp_path):
    with pytest.raises(UpstreamUnavailableError):
        asyncio.run(LocalIconSource(str(tmp_path)).fetch_icon_list())


# ─── 重試 ────────────────────────────────────────────────────────────────────

def test_backoff_delay_doubles_and_caps():
    assert [backoff_delay(n) for n in (1, 2, 3, 4, 5)] == [60, 120, 240, 480, 600]
    assert backoff_delay(3, base_delay=1, max_delay=10) == 4


def test_retryable_statuses():
    assert is_retryable(FetchError("u", 429))
    assert is_retryable(FetchError("u", 503))
    assert not is_retryable(FetchError("u", 403))
    assert not is_retryable(ValueError("bad svg"))


def test_fetch_with_retry_retries_rate_limited_items():
    calls = {}

    async def fetch_one(key):
        calls[key] = calls.get(key, 0) + 1
        if key == "b" and calls[key] < 3:
            raise FetchError(f"https://example.test/{key}", 429)
        return key.upper()

    results, failures = asyncio.run(fetch_with_retry(["a", "b", "c"], fetch_one, base_delay=0))
    assert results == {"a": "A", "b": "B", "c": "C"}
    assert failures == {}
    assert calls == {"a": 1, "b": 3, "c": 1}


def test_fetch_with_retry_does_not_retry_client_errors():
    calls = []

    async def fetch_one(key):
        calls.append(key)
        raise FetchError(f"https://example.test/{key}", 404)

    results, failures = asyncio.run(fetch_with_retry(["a"], fetch_one, base_delay=0))
    assert results == {}
    assert list(failures) == ["a"]
    assert calls == ["a"]


def test_fetch_with_retry_gives_up_after_max_retries():
    calls = []

    async def fetch_one(key):
        calls.append(key)
        raise FetchError("https://example.test/down", 502)

    _, failures = asyncio.run(fetch_with_retry(["a"], fetch_one, max_retries=2, base_delay=0))
    assert len(calls) == 3
    assert failures["a"].status_code == 502


def test_fetch_with_retry_bounds_concurrency():
    active = {"now": 0, "peak": 0}

    async def fetch_one(key):
        active["now"] += 1
        active["peak"] = max(active["peak"], active["now"])
        await asyncio.sleep(0)
        active["now"] -= 1
        return key

    results, _ = asyncio.run(fetch_with_retry(range(20), fetch_one, concurrency=3))
    assert len(results) == 20
    assert active["peak"] <= 3


def test_cancel_stops_retry_wait():
    cancel = CancellationToken()

    async def fetch_one(key):
        cancel.cancel()
        raise FetchError("https://example.test/slow", 429)

    # base_delay 很長：若沒檢查取消，測試會卡住
    _, failures = asyncio.run(fetch_with_retry(["a"], fetch_one, base_delay=3600, cancel=cancel))
    assert list(failures) == ["a"]
