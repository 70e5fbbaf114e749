"""
上游 icon 來源

- GitHubIconSource：google/material-design-icons（raw.githubusercontent.com + GitHub API）
- LocalIconSource：同樣目錄結構的本機 checkout（watch 模式用）
- fetch_with_retry：有上限的並行抓取，失敗項目以指數退避重試，可取消

SVG 檔名規則（權重只在非 400 時出現，修飾字之間不加底線）：
    {icon}[_wght{W}][gradN25|grad200][fill1]_{size}px.svg
例：home_24px.svg、home_wght200gradN25fill1_48px.svg
"""

import asyncio
import os
from functools import partial
from typing import Awaitable, Callable, Hashable, Iterable, Optional, Protocol

import requests

from .errors import FetchError, UpstreamUnavailableError
from .fingerprint import fingerprint_svg
from .planner import IconEntry
from .reporting import CancellationToken, Reporter
from .variants import VariantSpec

RAW_BASE_URL = "https://raw.githubusercontent.com"
API_BASE_URL = "https://api.github.com"
DEFAULT_OWNER = "google"
DEFAULT_REPO = "material-design-icons"
DEFAULT_REF = "master"

# 依序嘗試；新版 Material Symbols（variablefont）有 3900+ 個 icon
CODEPOINT_PATHS = (
    "variablefont/MaterialSymbolsRounded[FILL,GRAD,opsz,wght].codepoints",
    "variablefont/MaterialSymbolsOutlined[FILL,GRAD,opsz,wght].codepoints",
    "variablefont/MaterialSymbolsSharp[FILL,GRAD,opsz,wght].codepoints",
    "font/MaterialIconsRound-Regular.codepoints",
    "font/MaterialIconsOutlined-Regular.codepoints",
    "font/MaterialIcons-Regular.codepoints",
)

CATEGORY_DIRS = (
    "symbols/categories",
    "update/current_versions/symbols/categories",
)

KNOWN_CATEGORIES = (
    "action", "alert", "av", "communication", "content", "device", "editor",
    "file", "hardware", "home", "image", "maps", "navigation", "notification",
    "places", "social", "toggle",
)

DEFAULT_WEIGHT = 400
RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


class IconSource(Protocol):
    async def fetch_icon_list(self) -> list[IconEntry]: ...
    async def fetch_version_marker(self) -> str: ...
    async def fetch_variant(self, icon: str, spec: VariantSpec) -> str: ...


# ─── 檔名 / URL ──────────────────────────────────────────────────────────────

def variant_filename(icon: str, spec: VariantSpec) -> str:
    modifiers = ""
    if spec.weight != DEFAULT_WEIGHT:
        modifiers += f"wght{spec.weight}"
    if spec.grade == -25:
        modifiers += "gradN25"
    elif spec.grade == 200:
        modifiers += "grad200"
    if spec.fill == 1:
        modifiers += "fill1"
    filename = icon
    if modifiers:
        filename += "_" + modifiers
    return f"{filename}_{spec.optical_size}px.svg"


def variant_path(icon: str, spec: VariantSpec) -> str:
    return f"symbols/web/{icon}/materialsymbols{spec.style}/{variant_filename(icon, spec)}"


def parse_codepoints(text: str) -> list[str]:
    """`name codepoint` 每行一筆；保留順序並去重."""
    names = []
    for line in text.splitlines():
        parts = line.split()
        if parts:
            names.append(parts[0].strip())
    return list(dict.fromkeys(names))


def parse_category_file(text: str) -> list[str]:
    return [
        line.strip() for line in text.splitlines()
        if line.strip() and not line.strip().startswith(("#", "//"))
    ]


def assign_categories(names: Iterable[str], categories: dict[str, list[str]]) -> list[IconEntry]:
    """一個 icon 出現在多個分類時取第一個；找不到分類者 category=None."""
    lookup: dict[str, str] = {}
    for category, members in categories.items():
        for name in members:
            lookup.setdefault(name, category)
    return [IconEntry(name, lookup.get(name)) for name in names]


# ─── GitHub ──────────────────────────────────────────────────────────────────

class GitHubIconSource:
    """從 GitHub 抓 icon 清單、commit SHA 與各 variant 的 SVG.

    requests 是同步的，實際 I/O 以 asyncio.to_thread 丟到 worker thread，
    讓 event loop 在抓取期間仍可回應。
    """

    def __init__(
        self,
        owner: str = DEFAULT_OWNER,
        repo: str = DEFAULT_REPO,
        ref: str = DEFAULT_REF,
        token: Optional[str] = None,
        categories: Optional[list[str]] = None,
        with_categories: bool = True,
        reporter: Optional[Reporter] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self.owner = owner
        self.repo = repo
        self.ref = ref
        self.categories = categories
        self.with_categories = with_categories
        self.reporter = reporter or Reporter()
        self.timeout = timeout
        self.session = session or requests.Session()
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    def raw_url(self, path: str) -> str:
        return f"{RAW_BASE_URL}/{self.owner}/{self.repo}/{self.ref}/{path}"

    def variant_url(self, icon: str, spec: VariantSpec) -> str:
        return self.raw_url(variant_path(icon, spec))

    def _get(self, url: str, headers: Optional[dict] = None) -> requests.Response:
        try:
            resp = self.session.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(url, details={"reason": str(e)}) from e
        if resp.status_code != 200:
            raise FetchError(url, resp.status_code)
        return resp

    def _first_text(self, paths: Iterable[str]) -> Optional[tuple[str, str]]:
        for path in paths:
            try:
                return path, self._get(self.raw_url(path)).text
            except FetchError as e:
                self.reporter.debug(f"Failed to fetch {path}: {e}")
        return None

    def _load_categories(self) -> dict[str, list[str]]:
        names = self.categories
        if names is None:
            found = self._first_text(f"{d}/index.txt" for d in CATEGORY_DIRS)
            names = parse_category_file(found[1]) if found else list(KNOWN_CATEGORIES)
        result = {}
        for category in names:
            found = self._first_text(f"{d}/{category}.txt" for d in CATEGORY_DIRS)
            if found is None:
                self.reporter.warning(f"Category {category} not found upstream")
                continue
            result[category] = parse_category_file(found[1])
        return result

    def _load_icon_list(self) -> list[IconEntry]:
        found = self._first_text(CODEPOINT_PATHS)
        if found is None:
            raise UpstreamUnavailableError(
                "could not fetch codepoints from any known location",
                {"owner": self.owner, "repo": self.repo, "ref": self.ref},
            )
        path, text = found
        names = parse_codepoints(text)
        self.reporter.info(f"Parsed {len(names)} icons from {path}")
        categories = self._load_categories() if self.with_categories else {}
        return assign_categories(names, categories)

    def _load_commit_sha(self) -> str:
        url = f"{API_BASE_URL}/repos/{self.owner}/{self.repo}/commits/{self.ref}"
        try:
            data = self._get(url, headers={"Accept": "application/vnd.github+json"}).json()
        except (FetchError, ValueError) as e:
            raise UpstreamUnavailableError(f"could not resolve {self.ref}: {e}") from e
        sha = data.get("sha") if isinstance(data, dict) else None
        if not sha:
            raise UpstreamUnavailableError(f"no commit SHA for {self.ref}")
        return sha

    async def fetch_icon_list(self) -> list[IconEntry]:
        return await asyncio.to_thread(self._load_icon_list)

    async def fetch_version_marker(self) -> str:
        return await asyncio.to_thread(self._load_commit_sha)

    async def fetch_variant(self, icon: str, spec: VariantSpec) -> str:
        resp = await asyncio.to_thread(self._get, self.variant_url(icon, spec))
        return resp.text


# ─── 本機 checkout ───────────────────────────────────────────────────────────

class LocalIconSource:
    """讀取本機的 material-design-icons 目錄（或同結構的子集）."""

    def __init__(self, root: str, reporter: Optional[Reporter] = None):
        self.root = os.path.abspath(root)
        self.reporter = reporter or Reporter()

    def _path(self, relative: str) -> str:
        return os.path.join(self.root, *relative.split("/"))

    def _read(self, relative: str) -> str:
        path = self._path(relative)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except OSError as e:
            raise FetchError(path, details={"reason": str(e)}) from e

    def _codepoints(self) -> tuple[str, str]:
        for relative in CODEPOINT_PATHS:
            if os.path.isfile(self._path(relative)):
                return relative, self._read(relative)
        raise UpstreamUnavailableError(f"no codepoints file under {self.root}")

    def _load_icon_list(self) -> list[IconEntry]:
        relative, text = self._codepoints()
        names = parse_codepoints(text)
        self.reporter.info(f"Parsed {len(names)} icons from {relative}")
        categories = {}
        for directory in CATEGORY_DIRS:
            full = self._path(directory)
            if not os.path.isdir(full):
                continue
            for filename in sorted(os.listdir(full)):
                if filename.endswith(".txt") and filename != "index.txt":
                    categories.setdefault(filename[:-4], parse_category_file(self._read(f"{directory}/{filename}")))
        return assign_categories(names, categories)

    def _git_head(self) -> Optional[str]:
        head_path = os.path.join(self.root, ".git", "HEAD")
        if not os.path.isfile(head_path):
            return None
        with open(head_path, "r", encoding="utf-8") as f:
            head = f.read().strip()
        if not head.startswith("ref:"):
            return head or None
        ref_path = os.path.join(self.root, ".git", *head[4:].strip().split("/"))
        if not os.path.isfile(ref_path):
            return None
        with open(ref_path, "r", encoding="utf-8") as f:
            return f.read().strip() or None

    def _load_version_marker(self) -> str:
        sha = self._git_head()
        if sha:
            return sha
        # 不是 git checkout：以 codepoints 內容指紋代替
        return f"local-{fingerprint_svg(self._codepoints()[1])}"

    async def fetch_icon_list(self) -> list[IconEntry]:
        return await asyncio.to_thread(self._load_icon_list)

    async def fetch_version_marker(self) -> str:
        return await asyncio.to_thread(self._load_version_marker)

    async def fetch_variant(self, icon: str, spec: VariantSpec) -> str:
        return await asyncio.to_thread(self._read, variant_path(icon, spec))


# ─── 重試 ────────────────────────────────────────────────────────────────────

def backoff_delay(attempt: int, base_delay: float = 60.0, max_delay: float = 600.0) -> float:
    """第 n 次重試前的等待秒數：base × 2^(n-1)，上限 max_delay."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, FetchError):
        return error.status_code is None or error.status_code in RETRYABLE_STATUS
    return False


async def _wait(seconds: float, cancel: Optional[CancellationToken]) -> bool:
    """分段等待以便中途取消；被取消時回傳 False."""
    remaining = seconds
    while remaining > 0:
        if cancel is not None and cancel.is_cancelled():
            return False
        step = min(1.0, remaining)
        await asyncio.sleep(step)
        remaining -= step
    return cancel is None or not cancel.is_cancelled()


async def fetch_with_retry(
    keys: Iterable[Hashable],
    fetch_one: Callable[[Hashable], Awaitable],
    concurrency: int = 8,
    max_retries: int = 4,
    base_delay: float = 60.0,
    max_delay: float = 600.0,
    cancel: Optional[CancellationToken] = None,
    reporter: Optional[Reporter] = None,
) -> tuple[dict, dict]:
    """抓取所有 key；回傳 (results, failures)。

    同時進行的抓取數不超過 concurrency。第一輪之後只重試失敗且可重試的項目
    （網路錯誤、429、5xx），最多 max_retries 輪。
    """
    reporter = reporter or Reporter()
    semaphore = asyncio.Semaphore(max(1, concurrency))
    results: dict = {}
    failures: dict = {}

    async def run(key):
        async with semaphore:
            try:
                results[key] = await fetch_one(key)
                failures.pop(key, None)
            except Exception as e:
                failures[key] = e

    pending = list(dict.fromkeys(keys))
    attempt = 0
    while pending:
        await asyncio.gather(*(run(key) for key in pending))
        pending = [key for key in pending if key in failures and is_retryable(failures[key])]
        if not pending or attempt >= max_retries:
            break
        attempt += 1
        delay = backoff_delay(attempt, base_delay, max_delay)
        reporter.warning(
            f"{len(pending)} fetches failed, retrying in {delay:.0f}s (attempt {attempt}/{max_retries})"
        )
        if not await _wait(delay, cancel):
            reporter.info("Retry cancelled")
            break
    return results, failures


async def fetch_icon_variants(
    source: IconSource,
    icon: str,
    specs: Iterable[VariantSpec],
    **retry_options,
) -> tuple[dict, dict]:
    return await fetch_with_retry(specs, partial(source.fetch_variant, icon), **retry_options)
