"""
頁面 / 批次規劃

把數千個 icon 切成有上限的工作單位（頁面），三種策略：
  category      依分類分組，單一分類超過上限才切成多頁
  alphabetical  依名稱排序後固定大小切片
  hybrid        先依分類分組，過大的分類再依字首字母切開

plan() 不重排：所有頁面依序串接後必須與輸入完全相同（不重複、不遺漏）。
正規排序交給 order_for_strategy()，由 orchestrator 在規劃前呼叫。
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence

from .errors import PlanInvariantError

CATEGORY = "category"
ALPHABETICAL = "alphabetical"
HYBRID = "hybrid"
STRATEGIES = (CATEGORY, ALPHABETICAL, HYBRID)

DEFAULT_PAGE_SIZE = 100
UNCATEGORIZED = "Uncategorized"


@dataclass(frozen=True)
class IconEntry:
    name: str
    category: Optional[str] = None

    @property
    def has_category(self) -> bool:
        return bool(self.category and self.category.strip())


@dataclass
class PagePlan:
    name: str
    icons: list[IconEntry] = field(default_factory=list)
    start_index: int = 0
    end_index: int = 0  # exclusive

    @property
    def icon_names(self) -> list[str]:
        return [icon.name for icon in self.icons]

    def __len__(self) -> int:
        return len(self.icons)


def as_entries(icons: Sequence) -> list[IconEntry]:
    """接受 IconEntry 或純字串."""
    return [icon if isinstance(icon, IconEntry) else IconEntry(str(icon)) for icon in icons]


def _category_key(icon: IconEntry) -> str:
    # 沒有分類的 icon 自成一個單元素分類，不會被丟掉
    if icon.has_category:
        return f"c:{icon.category.strip()}"
    return f"u:{icon.name}"


def _category_label(icon: IconEntry) -> str:
    if icon.has_category:
        return icon.category.strip().replace("_", " ").title()
    return f"{UNCATEGORIZED}: {icon.name}"


def order_for_strategy(icons: Sequence, strategy: str) -> list[IconEntry]:
    """依策略產生正規順序（穩定排序）."""
    entries = as_entries(icons)
    if strategy == ALPHABETICAL:
        return sorted(entries, key=lambda icon: icon.name)
    if strategy not in (CATEGORY, HYBRID):
        raise ValueError(f"Unknown planning strategy: {strategy!r}")
    first_seen: dict[str, int] = {}
    for icon in entries:
        first_seen.setdefault(_category_key(icon), len(first_seen))
    if strategy == CATEGORY:
        return sorted(entries, key=lambda icon: first_seen[_category_key(icon)])
    return sorted(entries, key=lambda icon: (first_seen[_category_key(icon)], icon.name))


def _runs(entries: list[IconEntry]) -> list[tuple[int, list[IconEntry]]]:
    """相鄰且同分類的 icon 歸成一段：(起始 index, icons)."""
    runs: list[tuple[int, list[IconEntry]]] = []
    for index, icon in enumerate(entries):
        if runs and _category_key(runs[-1][1][-1]) == _category_key(icon):
            runs[-1][1].append(icon)
        else:
            runs.append((index, [icon]))
    return runs


def _slices(items: list, size: int) -> list[list]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def _even_slices(items: list, size: int) -> list[list]:
    """切成 ceil(n/size) 份、大小盡量平均的連續片段."""
    parts = -(-len(items) // size)
    base, extra = divmod(len(items), parts)
    result, start = [], 0
    for i in range(parts):
        length = base + (1 if i < extra else 0)
        result.append(items[start:start + length])
        start += length
    return result


def _initial(icon: IconEntry) -> str:
    return icon.name[:1].lower() or "_"


def _letter_slices(items: list[IconEntry], size: int) -> list[list[IconEntry]]:
    """依字首字母分界貪婪打包，單一字母仍過大時再固定大小切片."""
    groups: list[list[IconEntry]] = []
    for icon in items:
        if groups and _initial(groups[-1][-1]) == _initial(icon):
            groups[-1].append(icon)
        else:
            groups.append([icon])

    chunks: list[list[IconEntry]] = []
    current: list[IconEntry] = []
    for group in groups:
        if len(group) > size:
            if current:
                chunks.append(current)
                current = []
            chunks.extend(_slices(group, size))
            continue
        if len(current) + len(group) > size:
            chunks.append(current)
            current = []
        current = current + group
    if current:
        chunks.append(current)
    return chunks


def _alphabetical(entries: list[IconEntry], size: int) -> list[PagePlan]:
    pages = []
    for number, chunk in enumerate(_slices(entries, size), start=1):
        pages.append(PagePlan(f"Set {number}: {chunk[0].name} – {chunk[-1].name}", chunk))
    return pages


def _grouped(entries: list[IconEntry], size: int, split_by_letter: bool) -> list[PagePlan]:
    pages = []
    for _, run in _runs(entries):
        label = _category_label(run[0])
        if len(run) <= size:
            pages.append(PagePlan(label, run))
            continue
        if split_by_letter:
            for chunk in _letter_slices(run, size):
                first, last = _initial(chunk[0]), _initial(chunk[-1])
                suffix = first if first == last else f"{first} – {last}"
                pages.append(PagePlan(f"{label}: {suffix}", chunk))
        else:
            chunks = _even_slices(run, size)
            for k, chunk in enumerate(chunks, start=1):
                pages.append(PagePlan(f"{label} ({k}/{len(chunks)})", chunk))
    return pages


def _dedupe_names(pages: list[PagePlan]) -> None:
    seen: dict[str, int] = {}
    for page in pages:
        if page.name in seen:
            seen[page.name] += 1
            page.name = f"{page.name} #{seen[page.name]}"
        else:
            seen[page.name] = 1


def validate_plan(pages: Sequence[PagePlan], icons: Sequence) -> None:
    """檢查分割不變量：連續、不重疊、串接後等於輸入."""
    entries = as_entries(icons)
    cursor = 0
    for page in pages:
        if not page.icons:
            raise PlanInvariantError(f'page "{page.name}" is empty')
        if page.start_index != cursor:
            raise PlanInvariantError(
                f'page "{page.name}" starts at {page.start_index}, expected {cursor}'
            )
        if page.end_index - page.start_index != len(page.icons):
            raise PlanInvariantError(f'page "{page.name}" index range does not match its icons')
        if page.icons != entries[page.start_index:page.end_index]:
            raise PlanInvariantError(f'page "{page.name}" does not match the icon list')
        cursor = page.end_index
    if cursor != len(entries):
        raise PlanInvariantError(f"plan covers {cursor} of {len(entries)} icons")


def plan(icons: Sequence, strategy: str = CATEGORY, page_size_hint: int = DEFAULT_PAGE_SIZE) -> list[PagePlan]:
    """把 icon 清單切成頁面；不重排，結果一定通過 validate_plan."""
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown planning strategy: {strategy!r}")
    if page_size_hint < 1:
        raise ValueError("page_size_hint must be >= 1")
    entries = as_entries(icons)
    if not entries:
        return []

    if strategy == ALPHABETICAL:
        pages = _alphabetical(entries, page_size_hint)
    else:
        pages = _grouped(entries, page_size_hint, split_by_letter=(strategy == HYBRID))

    cursor = 0
    for page in pages:
        page.start_index = cursor
        cursor += len(page.icons)
        page.end_index = cursor
    _dedupe_names(pages)
    validate_plan(pages, entries)
    return pages
