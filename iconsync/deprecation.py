"""
Deprecation 對帳 — 匯入新 icon 之前，先把頁面上不再需要的 family 改名

每個既有 family 節點只會落在三種狀態之一：
  ALREADY_DEPRECATED  名稱已帶 marker（終態，略過）
  MATCHING            正規化後的名稱在匯入清單內（不動，稍後由 orchestrator 更新）
  STALE               不在匯入清單內 → 加上 marker 改名，轉成 ALREADY_DEPRECATED

唯一的變更是 rename：不刪除任何節點，variant、metadata 與變數綁定全部保留。
改名失敗逐筆計數，不中斷整批。
只掃描目標頁面（select_target_pages），其他頁面上的元件不屬於 icon 庫。

同一個識別字對到多個 family（例如 "home" 與 "Icons/home"）時，
樹狀順序中第一個出現者為 MATCHING，其餘視為 STALE。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from .document import FAMILY, DocumentTree, NodeInfo, find_all
from .errors import RenameError
from .naming import NameNormalizer
from .reporting import Reporter


class FamilyState(str, Enum):
    ALREADY_DEPRECATED = "already_deprecated"
    MATCHING = "matching"
    STALE = "stale"


@dataclass
class DeprecationResult:
    existing: list[NodeInfo] = field(default_factory=list)
    matching: list[NodeInfo] = field(default_factory=list)
    deprecated: list[NodeInfo] = field(default_factory=list)
    already_deprecated: list[NodeInfo] = field(default_factory=list)
    renamed_count: int = 0
    failed_count: int = 0

    def matching_by_identifier(self, normalizer: Optional[NameNormalizer] = None) -> dict[str, NodeInfo]:
        normalizer = normalizer or NameNormalizer()
        return {normalizer.normalize(n.name): n for n in self.matching}


def classify(
    families: Iterable[NodeInfo],
    import_names: Iterable[str],
    normalizer: Optional[NameNormalizer] = None,
) -> list[tuple[NodeInfo, FamilyState]]:
    """純分類，不改動文件."""
    normalizer = normalizer or NameNormalizer()
    importing = {normalizer.normalize(n) for n in import_names}
    claimed: set[str] = set()
    result = []
    for family in families:
        if normalizer.is_deprecated(family.name):
            result.append((family, FamilyState.ALREADY_DEPRECATED))
            continue
        identifier = normalizer.normalize(family.name)
        if identifier in importing and identifier not in claimed:
            claimed.add(identifier)
            result.append((family, FamilyState.MATCHING))
        else:
            result.append((family, FamilyState.STALE))
    return result


class DeprecationReconciler:
    """掃描頁面、分類既有 family、對 STALE 者加上 deprecation marker."""

    def __init__(
        self,
        doc: DocumentTree,
        reporter: Optional[Reporter] = None,
        normalizer: Optional[NameNormalizer] = None,
    ):
        self.doc = doc
        self.reporter = reporter or Reporter()
        self.normalizer = normalizer or NameNormalizer()

    async def reconcile(self, page: NodeInfo, import_names: Iterable[str], dry_run: bool = False) -> DeprecationResult:
        return await self.reconcile_pages([page], import_names, dry_run)

    async def reconcile_pages(
        self,
        pages: Iterable[NodeInfo],
        import_names: Iterable[str],
        dry_run: bool = False,
    ) -> DeprecationResult:
        """多頁一起對帳；重複識別字的「第一個」以頁面順序 + 樹狀順序決定."""
        families: list[NodeInfo] = []
        for page in pages:
            self.reporter.info(f'Scanning page "{page.name}" for existing icon families...')
            found = await find_all(self.doc, page.id, FAMILY)
            self.reporter.debug(f'Found {len(found)} families on "{page.name}"')
            families.extend(found)
        self.reporter.info(f"Found {len(families)} existing families")

        result = DeprecationResult(existing=families)
        for family, state in classify(families, import_names, self.normalizer):
            if state is FamilyState.ALREADY_DEPRECATED:
                result.already_deprecated.append(family)
                self.reporter.debug(f'"{family.name}" is already deprecated')
            elif state is FamilyState.MATCHING:
                result.matching.append(family)
            else:
                await self._deprecate(family, result, dry_run)

        if result.renamed_count:
            self.reporter.info(f"Renamed {result.renamed_count} deprecated families")
        if result.failed_count:
            self.reporter.warning(f"{result.failed_count} families could not be renamed")
        return result

    async def _deprecate(self, family: NodeInfo, result: DeprecationResult, dry_run: bool) -> None:
        new_name = self.normalizer.mark_deprecated(family.name)
        if dry_run:
            result.deprecated.append(family)
            self.reporter.debug(f'[DRY] would rename "{family.name}" → "{new_name}"')
            return
        try:
            # 走訪之後已經過多個暫停點，改名前確認節點仍在且名稱未被改動
            current = await self.doc.get(family.id)
            if current is None:
                self.reporter.warning(f'"{family.name}" disappeared before rename')
                result.failed_count += 1
                return
            if self.normalizer.is_deprecated(current.name):
                result.already_deprecated.append(current)
                return
            await self.doc.rename(family.id, self.normalizer.mark_deprecated(current.name))
        except Exception as e:
            result.failed_count += 1
            self.reporter.warning(RenameError(family.name, str(e)).message)
            return
        result.deprecated.append(family)
        result.renamed_count += 1
        self.reporter.debug(f'Renamed "{family.name}" → "{new_name}"')


def select_target_pages(pages: Iterable[NodeInfo], planned_names: Iterable[str], prefix: str = "") -> list[NodeInfo]:
    """要對帳的頁面：名稱就是本次規劃的頁面，或帶有設定的頁面前綴.

    前綴為空時只看規劃的頁名，其他頁面（元件庫、封面）上的 component set 不會被動到。
    """
    planned = set(planned_names)
    return [p for p in pages if p.name in planned or (prefix and p.name.startswith(prefix))]


def deprecation_summary(result: DeprecationResult) -> str:
    """給操作者看的一行摘要（只有數字）."""
    parts = [f"Found {len(result.existing)} existing families"]
    if result.matching:
        parts.append(f"{len(result.matching)} will be updated")
    if result.deprecated:
        # dry run 時是「會被改名」的數量
        parts.append(f"{len(result.deprecated)} deprecated")
    if result.failed_count:
        parts.append(f"{result.failed_count} rename failures")
    return ", ".join(parts)
