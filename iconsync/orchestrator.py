"""
Synthesis orchestrator — 一次完整的同步 run

    1. 取得上游 icon 清單與版本標記（commit SHA）
    2. 排序 + 規劃頁面
    3. 建立任何元件之前，先對帳 deprecation
    4. 逐一 icon：略過 / 補齊缺少的 variant / 只更新內容變了的 variant / 全新建立
    5. 新建或更新的 family 套用 token 樣式（失敗降級為靜態值）
    6. 每個 icon 結束送出進度，最後送出統計

每個 icon 先抓完所有需要的 SVG（不動文件），確認未取消後才開始改文件；
改文件途中失敗會移除本次新建的節點、把改寫過的 variant 換回原內容，family 不會只做一半。
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from .deprecation import DeprecationReconciler, deprecation_summary, select_target_pages
from .document import (
    FAMILY,
    GIT_COMMIT_SHA,
    SVG_HASH,
    VARIANT,
    DocumentTree,
    HostCapabilities,
    NodeInfo,
    TokenStore,
)
from .errors import IconSynthesisError, SystemicError, UpstreamUnavailableError
from .fingerprint import fingerprint_svg, fingerprints_match
from .naming import NameNormalizer
from .planner import CATEGORY, DEFAULT_PAGE_SIZE, IconEntry, PagePlan, order_for_strategy, plan
from .reporting import CancellationToken, ProgressTracker, Reporter, RunStats, Stopwatch
from .tokens import DEFAULT_STYLE_RULES, TokenResolver, apply_family_style
from .upstream import IconSource, fetch_icon_variants
from .variants import VariantAxes, VariantSpec, find_best_default_variant, parse_variant_name

CREATED = "created"
UPDATED = "updated"
SKIPPED = "skipped"
CANCELLED = "cancelled"
FAILED = "failed"


@dataclass
class OrchestratorOptions:
    axes: VariantAxes = field(default_factory=VariantAxes)
    strategy: str = CATEGORY
    page_size: int = DEFAULT_PAGE_SIZE
    page_prefix: str = ""
    # True：版本標記相同且 variant 齊全就直接略過，不重新抓 SVG 比對指紋
    trust_version_marker: bool = False
    fetch_concurrency: int = 8
    max_retries: int = 4
    retry_delay: float = 60.0
    max_retry_delay: float = 600.0
    yield_every: int = 1
    limit: Optional[int] = None
    style_rules: tuple = DEFAULT_STYLE_RULES


@dataclass
class _FamilySnapshot:
    family: NodeInfo
    marker: str
    variants: dict  # VariantSpec -> NodeInfo
    hashes: dict  # VariantSpec -> str

    def missing(self, specs: list[VariantSpec]) -> list[VariantSpec]:
        return [spec for spec in specs if spec not in self.variants]


def plan_run(icons: list, options: OrchestratorOptions) -> tuple[list[str], list[PagePlan]]:
    """排序、套用 limit、切頁；回傳 (完整匯入清單, 本次要處理的頁面)。

    匯入清單不受 limit 影響，limit 之外的既有 family 不會被當成過期。
    """
    ordered = order_for_strategy(icons, options.strategy)
    import_names = [icon.name for icon in ordered]
    if options.limit:
        ordered = ordered[:options.limit]
    return import_names, plan(ordered, options.strategy, options.page_size)


class SynthesisOrchestrator:
    """把上游 icon 清單同步成文件裡的 icon family."""

    def __init__(
        self,
        doc: DocumentTree,
        tokens: TokenStore,
        source: IconSource,
        reporter: Optional[Reporter] = None,
        capabilities: Optional[HostCapabilities] = None,
        options: Optional[OrchestratorOptions] = None,
        cancel: Optional[CancellationToken] = None,
        normalizer: Optional[NameNormalizer] = None,
    ):
        self.doc = doc
        self.tokens = tokens
        self.source = source
        self.reporter = reporter or Reporter()
        self.capabilities = capabilities or HostCapabilities()
        self.options = options or OrchestratorOptions()
        self.cancel = cancel or CancellationToken()
        self.normalizer = normalizer or NameNormalizer()
        problems = self.options.axes.validate()
        if problems:
            raise ValueError(f"Invalid variant axes: {'; '.join(problems)}")
        self.reconciler = DeprecationReconciler(doc, self.reporter, self.normalizer)
        self.resolver = TokenResolver(tokens, self.capabilities, self.reporter)
        self.stats = RunStats()
        self.version_marker = ""
        self.specs: list[VariantSpec] = []
        self._matching: dict[str, NodeInfo] = {}
        self._pages: dict[str, str] = {}

    # ── run ──
    async def run(self) -> RunStats:
        watch = Stopwatch()
        self.stats = RunStats()
        self.resolver.clear()
        self._pages = {}
        self.specs = self.options.axes.expand()
        try:
            icons = await self._fetch_upstream()
            import_names, pages = plan_run(icons, self.options)
            total = sum(len(page) for page in pages)
            self.reporter.info(
                f"🚀 Planned {total} icons × {len(self.specs)} variants "
                f"on {len(pages)} pages ({self.options.strategy})"
            )
            await self._reconcile(import_names, pages)
            await self._synthesize(pages, total)
        except SystemicError as e:
            self.stats.time_elapsed = watch.elapsed()
            self.reporter.error(e.message, error=e.to_dict())
            raise
        self.stats.time_elapsed = watch.elapsed()
        self.stats.icons_generated = self.stats.icons_created + self.stats.icons_updated
        self.reporter.stats(self.stats)
        return self.stats

    async def _fetch_upstream(self) -> list[IconEntry]:
        try:
            icons = await self.source.fetch_icon_list()
            self.version_marker = await self.source.fetch_version_marker() or ""
        except SystemicError:
            raise
        except Exception as e:
            raise UpstreamUnavailableError(str(e)) from e
        if not icons:
            raise UpstreamUnavailableError("icon list is empty")

        # 上游清單內同名 icon 只保留第一個
        unique: dict[str, IconEntry] = {}
        for icon in icons:
            unique.setdefault(self.normalizer.normalize(icon.name), icon)
        if len(unique) != len(icons):
            self.reporter.warning(f"Dropped {len(icons) - len(unique)} duplicate icon names from upstream list")
        self.reporter.info(f"Upstream: {len(unique)} icons at {self.version_marker[:7] or 'unknown version'}")
        return list(unique.values())

    async def _reconcile(self, import_names: list[str], planned: list[PagePlan]) -> None:
        pages = select_target_pages(
            await self.doc.list_pages(),
            [self._page_name(page) for page in planned],
            self.options.page_prefix,
        )
        result = await self.reconciler.reconcile_pages(pages, import_names)
        self.stats.deprecated = result.renamed_count
        self.stats.rename_failures = result.failed_count
        self._matching = result.matching_by_identifier(self.normalizer)
        self.reporter.info(deprecation_summary(result))

    # ── 逐一 icon ──
    async def _synthesize(self, pages: list[PagePlan], total: int) -> None:
        tracker = ProgressTracker(self.reporter, total)
        work = [(page, icon) for page in pages for icon in page.icons]
        prefetch = not self.options.trust_version_marker
        tasks: dict[int, asyncio.Task] = {}

        def start_fetch(index: int) -> None:
            if prefetch and index < len(work) and index not in tasks:
                tasks[index] = asyncio.create_task(self._fetch(work[index][1].name, self.specs))

        try:
            start_fetch(0)
            for index, (page, icon) in enumerate(work):
                if self.cancel.is_cancelled():
                    self._mark_cancelled(tracker)
                    break
                # 處理目前 icon 的同時先開始抓下一個
                start_fetch(index + 1)
                outcome = await self._process_icon(icon, page, tasks.pop(index, None))
                if outcome == CANCELLED:
                    self._mark_cancelled(tracker)
                    break
                tracker.icon_complete(icon.name, f"{_OUTCOME_ICONS.get(outcome, '✓')} {icon.name}")
                if page.icons[-1] is icon:
                    self.reporter.category_complete(self._page_name(page), len(page.icons))
                if self.options.yield_every and (index + 1) % self.options.yield_every == 0:
                    await asyncio.sleep(0)
        finally:
            for task in tasks.values():
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks.values(), return_exceptions=True)

    def _mark_cancelled(self, tracker: ProgressTracker) -> None:
        self.stats.cancelled = True
        self.reporter.warning(
            f"Cancelled after {tracker.completed_icons} of {tracker.total_icons} icons"
        )

    async def _process_icon(self, icon: IconEntry, page: PagePlan, pending: Optional[asyncio.Task]) -> str:
        try:
            outcome = await self._sync_icon(icon, page, pending)
        except SystemicError:
            _discard(pending)
            raise
        except Exception as e:
            _discard(pending)
            if self.cancel.is_cancelled():
                return CANCELLED
            error = e if isinstance(e, IconSynthesisError) else IconSynthesisError(icon.name, str(e))
            self.stats.icons_failed += 1
            self.reporter.error(error.message, icon=icon.name, error=error.to_dict())
            return FAILED
        if outcome == CREATED:
            self.stats.icons_created += 1
        elif outcome == UPDATED:
            self.stats.icons_updated += 1
        elif outcome == SKIPPED:
            self.stats.icons_skipped += 1
        return outcome

    async def _sync_icon(self, icon: IconEntry, page: PagePlan, pending: Optional[asyncio.Task]) -> str:
        snapshot = await self._snapshot(icon)
        if snapshot is not None and self.options.trust_version_marker and self._marker_current(snapshot) \
                and not snapshot.missing(self.specs):
            self.stats.variants_reused += len(self.specs)
            self.reporter.debug(f"{icon.name} is up to date ({snapshot.marker[:7]})")
            return SKIPPED

        svgs = await (pending if pending is not None else self._fetch(icon.name, self.specs))
        # 抓取期間可能已被取消；此時文件仍未動過
        if self.cancel.is_cancelled():
            return CANCELLED
        if snapshot is None:
            return await self._create_family(icon, page, svgs)
        return await self._update_family(icon, snapshot, svgs)

    async def _fetch(self, name: str, specs: list[VariantSpec]) -> dict:
        results, failures = await fetch_icon_variants(
            self.source,
            name,
            specs,
            concurrency=self.options.fetch_concurrency,
            max_retries=self.options.max_retries,
            base_delay=self.options.retry_delay,
            max_delay=self.options.max_retry_delay,
            cancel=self.cancel,
            reporter=self.reporter,
        )
        if failures:
            first = next(iter(failures.values()))
            raise IconSynthesisError(
                name,
                f"{len(failures)} of {len(specs)} variants could not be fetched",
                {"firstError": str(first)},
            )
        return results

    async def _snapshot(self, icon: IconEntry) -> Optional[_FamilySnapshot]:
        identifier = self.normalizer.normalize(icon.name)
        known = self._matching.get(identifier)
        if known is None:
            return None
        # 對帳之後已經過多個暫停點：確認節點還在、仍是 family、名稱仍對得上
        family = await self.doc.get(known.id)
        if family is None or family.type != FAMILY or self.normalizer.is_deprecated(family.name) \
                or self.normalizer.normalize(family.name) != identifier:
            self.reporter.warning(f'Family for "{icon.name}" changed since reconciliation; creating a new one')
            self._matching.pop(identifier, None)
            return None

        marker = await self._get_metadata(family.id, GIT_COMMIT_SHA)
        variants: dict = {}
        hashes: dict = {}
        for child in await self.doc.children(family.id):
            if child.type != VARIANT:
                continue
            spec = parse_variant_name(child.name)
            if spec is None or spec in variants:
                continue
            variants[spec] = child
            hashes[spec] = await self._get_metadata(child.id, SVG_HASH)
        return _FamilySnapshot(family, marker, variants, hashes)

    def _marker_current(self, snapshot: _FamilySnapshot) -> bool:
        return bool(snapshot.marker) and snapshot.marker == self.version_marker

    # ── 文件變更 ──
    async def _create_family(self, icon: IconEntry, page: PagePlan, svgs: dict) -> str:
        page_id = await self._ensure_page(page)
        created: list[str] = []
        family_id = None
        try:
            for spec in self.specs:
                node = await self.doc.create_variant(page_id, spec.name, svgs[spec])
                created.append(node.id)
                await self._stamp(node.id, svgs[spec])
            family = await self.doc.combine_as_family(created, page_id, icon.name)
            family_id = family.id
            await self._set_default_variant(family_id)
            await self._style(family_id)
            await self._set_marker(family_id)
        except Exception as e:
            await self._rollback([family_id] if family_id else created)
            raise IconSynthesisError(icon.name, str(e)) from e

        self.stats.variants_created += len(created)
        self._matching[self.normalizer.normalize(icon.name)] = family
        self.reporter.debug(f"Created {icon.name} with {len(created)} variants")
        return CREATED

    async def _update_family(self, icon: IconEntry, snapshot: _FamilySnapshot, svgs: dict) -> str:
        missing = snapshot.missing(self.specs)
        changed = [
            spec for spec in self.specs
            if spec in snapshot.variants
            and not fingerprints_match(snapshot.hashes.get(spec), fingerprint_svg(svgs[spec]))
        ]
        reused = len(self.specs) - len(missing) - len(changed)
        if not missing and not changed and self._marker_current(snapshot):
            self.stats.variants_reused += reused
            return SKIPPED

        family = await self.doc.get(snapshot.family.id)
        if family is None:
            raise IconSynthesisError(icon.name, "family disappeared while fetching")

        created: list[str] = []
        originals: dict = {}  # variant id -> (svg, svg_hash)
        previous_default = await self._get_default_variant(family.id) if missing else None
        try:
            for spec in changed:
                variant = snapshot.variants[spec]
                if not await self.doc.exists(variant.id):
                    raise IconSynthesisError(icon.name, f"variant {spec.name} disappeared")
                originals[variant.id] = (await self.doc.get_svg(variant.id), snapshot.hashes.get(spec, ""))
                await self.doc.update_variant(variant.id, svgs[spec])
                await self._stamp(variant.id, svgs[spec])
            for spec in missing:
                node = await self.doc.create_variant(family.parent_id, spec.name, svgs[spec])
                created.append(node.id)
                await self.doc.add_to_family(family.id, node.id)
                await self._stamp(node.id, svgs[spec])
            if missing:
                await self._set_default_variant(family.id)
            await self._style(family.id)
            await self._set_marker(family.id)
        except IconSynthesisError:
            await self._restore(family.id, originals, created, previous_default)
            raise
        except Exception as e:
            await self._restore(family.id, originals, created, previous_default)
            raise IconSynthesisError(icon.name, str(e)) from e

        self.stats.variants_created += len(missing)
        self.stats.variants_updated += len(changed)
        self.stats.variants_reused += reused
        self.reporter.debug(
            f"Updated {icon.name}: {len(missing)} added, {len(changed)} changed, {reused} reused"
        )
        return UPDATED

    async def _restore(self, family_id: str, originals: dict, created: list, default_id: Optional[str]) -> None:
        """更新失敗：移除新建的 variant，已改寫的 variant 換回原本的 SVG 與指紋."""
        await self._rollback(created)
        for variant_id, (svg, svg_hash) in originals.items():
            try:
                await self.doc.update_variant(variant_id, svg)
                if self.capabilities.supports_metadata:
                    await self.doc.set_metadata(variant_id, SVG_HASH, svg_hash)
            except Exception as e:
                self.reporter.warning(f"Restore of {variant_id} failed: {e}")
        if created and default_id:
            try:
                if await self.doc.exists(default_id):
                    await self.doc.set_default_variant(family_id, default_id)
            except Exception as e:
                self.reporter.warning(f"Restore of default variant on {family_id} failed: {e}")

    async def _rollback(self, node_ids: list) -> None:
        for node_id in reversed(node_ids):
            try:
                if await self.doc.exists(node_id):
                    await self.doc.remove(node_id)
            except Exception as e:
                self.reporter.warning(f"Rollback of {node_id} failed: {e}")

    async def _ensure_page(self, page: PagePlan) -> str:
        name = self._page_name(page)
        page_id = self._pages.get(name)
        if page_id is not None and await self.doc.exists(page_id):
            return page_id
        existing = await self.doc.find_page(name)
        if existing is None:
            existing = await self.doc.create_page(name)
            self.stats.pages_created += 1
            self.reporter.info(f'Created page "{name}"')
        self._pages[name] = existing.id
        return existing.id

    def _page_name(self, page: PagePlan) -> str:
        return f"{self.options.page_prefix}{page.name}"

    async def _get_metadata(self, node_id: str, key: str) -> str:
        if not self.capabilities.supports_metadata:
            return ""
        return await self.doc.get_metadata(node_id, key) or ""

    async def _stamp(self, variant_id: str, svg: str) -> None:
        if self.capabilities.supports_metadata:
            await self.doc.set_metadata(variant_id, SVG_HASH, fingerprint_svg(svg))

    async def _set_marker(self, family_id: str) -> None:
        if self.capabilities.supports_metadata and self.version_marker:
            await self.doc.set_metadata(family_id, GIT_COMMIT_SHA, self.version_marker)

    async def _get_default_variant(self, family_id: str) -> Optional[str]:
        if not self.capabilities.supports_default_variant:
            return None
        return await self.doc.get_default_variant(family_id)

    async def _set_default_variant(self, family_id: str) -> None:
        if not self.capabilities.supports_default_variant:
            return
        variants = [c for c in await self.doc.children(family_id) if c.type == VARIANT]
        best = find_best_default_variant(v.name for v in variants)
        if best is None:
            return
        variant = next(v for v in variants if v.name == best)
        await self.doc.set_default_variant(family_id, variant.id)

    async def _style(self, family_id: str) -> None:
        _, fallbacks = await apply_family_style(self.resolver, family_id, self.options.style_rules)
        self.stats.token_fallbacks += fallbacks


_OUTCOME_ICONS = {
    CREATED: "✨",
    UPDATED: "🔄",
    SKIPPED: "✓",
    FAILED: "❌",
}


def _discard(task: Optional[asyncio.Task]) -> None:
    """放棄一個可能還沒被 await 的預抓 task."""
    if task is None:
        return
    if not task.done():
        task.cancel()
    elif not task.cancelled():
        task.exception()
