#!/usr/bin/env python3
"""
iconsync CLI — Material Symbols icon family 同步

  python -m iconsync.cli plan                      # 預覽頁面規劃
  python -m iconsync.cli sync [--limit N]          # 同步到文件快照
  python -m iconsync.cli audit --file-key KEY      # 唯讀檢查 Figma 檔案的 deprecation
  python -m iconsync.cli watch                     # 監聽本機 checkout 變更並重新同步
"""

import argparse
import asyncio
import os
import threading
import time
from typing import Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from iconsync import __version__

from .config import (
    DEFAULT_CONFIG_PATH,
    capabilities_from_config,
    figma_token,
    github_token,
    load_config,
    orchestrator_options_from_config,
    snapshot_dir,
)
from .deprecation import DeprecationReconciler, deprecation_summary, select_target_pages
from .document import load_document, save_document
from .errors import SystemicError
from .figma_reader import FigmaAPIClient, FigmaToDocument
from .orchestrator import SynthesisOrchestrator, plan_run
from .planner import STRATEGIES
from .reporting import CancellationToken, ConsoleSink, Reporter, Severity
from .upstream import GitHubIconSource, LocalIconSource

DOCUMENT_FILENAME = "icon-document.json"


def _reporter(args) -> Reporter:
    verbose = getattr(args, "verbose", False)
    quiet = getattr(args, "quiet", False)
    return Reporter(
        ConsoleSink(show_progress=not quiet),
        min_severity=Severity.DEBUG if verbose else Severity.INFO,
    )


def build_source(args, config: dict, reporter: Reporter):
    """--local 或 upstream.localRoot 有值時讀本機 checkout，否則走 GitHub."""
    upstream = config.get("upstream", {})
    local_root = getattr(args, "local", None) or upstream.get("localRoot")
    if local_root:
        return LocalIconSource(local_root, reporter=reporter)
    return GitHubIconSource(
        owner=upstream.get("owner", "google"),
        repo=upstream.get("repo", "material-design-icons"),
        ref=getattr(args, "ref", None) or upstream.get("ref", "master"),
        token=github_token(config) or None,
        reporter=reporter,
    )


def _options(args, config: dict):
    options = orchestrator_options_from_config(config)
    if getattr(args, "strategy", None):
        options.strategy = args.strategy
    if getattr(args, "page_size", None):
        options.page_size = args.page_size
    if getattr(args, "limit", None):
        options.limit = args.limit
    if getattr(args, "trust_marker", False):
        options.trust_version_marker = True
    return options


def _document_path(args, config: dict) -> str:
    return getattr(args, "document", None) or os.path.join(snapshot_dir(config), DOCUMENT_FILENAME)


async def cmd_plan(args, config: dict):
    """Plan: 抓上游清單 → 排序 → 切頁，只印出結果."""
    reporter = _reporter(args)
    options = _options(args, config)
    source = build_source(args, config, reporter)
    print(f"🗂️  Planning pages ({options.strategy}, ≤{options.page_size} icons/page)")
    try:
        icons = await source.fetch_icon_list()
    except SystemicError as e:
        print(f"   ❌ {e.message}")
        return
    _, pages = plan_run(icons, options)
    for page in pages:
        print(f"   {options.page_prefix}{page.name}  [{page.start_index}:{page.end_index}]  {len(page)} icons")
    print(f"   ✅ {sum(len(page) for page in pages)} icons on {len(pages)} pages, "
          f"{options.axes.expected_count} variants each")


async def run_sync(args, config: dict, cancel: Optional[CancellationToken] = None):
    """Sync 核心流程，sync 與 watch 共用."""
    reporter = _reporter(args)
    options = _options(args, config)
    capabilities = capabilities_from_config(config)
    doc_path = _document_path(args, config)
    output_path = getattr(args, "output", None) or doc_path

    print(f"🚀 Syncing icons into: {doc_path}")
    doc = load_document(doc_path, capabilities)
    orchestrator = SynthesisOrchestrator(
        doc,
        doc,
        build_source(args, config, reporter),
        reporter=reporter,
        capabilities=capabilities,
        options=options,
        cancel=cancel,
    )
    try:
        stats = await orchestrator.run()
    except SystemicError as e:
        print(f"   ❌ Sync aborted: {e.message}")
        # 中止前已提交的 icon 仍然有效，照樣存檔
        save_document(doc, output_path)
        return None

    save_document(doc, output_path)
    print(f"   ✅ Saved to {output_path}")
    if stats.cancelled:
        print("   ⚠️  Run was cancelled; re-run sync to finish the remaining icons.")
    print("   Load this in the Figma plugin to apply the icon families.")
    return stats


async def cmd_sync(args, config: dict):
    await run_sync(args, config)


def cmd_audit(args, config: dict):
    """Audit: 讀 Figma 檔案 → 用上游清單做 dry-run 對帳 → 報告會被標記的 family."""
    token = figma_token(config)
    file_key = args.file_key or config.get("figma", {}).get("fileKey")

    if not token:
        print("❌ 請設定 FIGMA_TOKEN 環境變數，或在 icon-sync.config.json 的 figma.personalAccessToken 設定。")
        print("   取得方式：Figma → Settings → Personal access tokens → 新增")
        return
    if not file_key:
        print("❌ 請使用 --file-key 或在 config 的 figma.fileKey 設定 Figma 檔案 key。")
        return

    print(f"🔍 Auditing Figma file: {file_key}")
    client = FigmaAPIClient(token)
    try:
        figma_data = client.get_file(file_key)
    except Exception as e:
        status = getattr(getattr(e, "response", None), "status_code", None)
        if status == 403:
            print("❌ Figma API 403：Token 無效或已過期，請重新產生 FIGMA_TOKEN。")
        elif status == 404:
            print(f"❌ Figma API 404：找不到檔案 '{file_key}'，請確認 file key 是否正確。")
        else:
            print(f"❌ Figma API 錯誤：{e}")
        return

    doc = FigmaToDocument().convert(figma_data, page_names=args.page or None)
    print("   ✅ Fetched Figma file")

    reporter = _reporter(args)
    options = _options(args, config)

    async def run():
        icons = await build_source(args, config, reporter).fetch_icon_list()
        import_names, planned = plan_run(icons, options)
        pages = await doc.list_pages()
        if not args.page:
            # 沒指定 --page 時與 sync 相同：只看規劃頁名或帶前綴的頁面
            planned_names = [f"{options.page_prefix}{p.name}" for p in planned]
            pages = select_target_pages(pages, planned_names, options.page_prefix)
        return await DeprecationReconciler(doc, reporter).reconcile_pages(pages, import_names, dry_run=True)

    try:
        result = asyncio.run(run())
    except SystemicError as e:
        print(f"   ❌ {e.message}")
        return

    print(f"   📝 {deprecation_summary(result)}")
    if result.deprecated:
        print("   Would deprecate:")
        for family in result.deprecated:
            print(f"     - {family.name}")
    if result.already_deprecated:
        print(f"   ℹ️  {len(result.already_deprecated)} families already deprecated")


_WATCHED_EXTENSIONS = (".svg", ".codepoints", ".txt")


class ChangeHandler(FileSystemEventHandler):
    """檔案變更事件處理器，帶 debounce 防抖。"""

    def __init__(self, callback, loop: asyncio.AbstractEventLoop, debounce: float = 1.0):
        self.callback = callback
        self.loop = loop
        self.last_trigger = 0.0
        self.debounce_seconds = debounce

    def on_any_event(self, event):
        if event.is_directory or event.event_type not in ("created", "modified", "moved", "deleted"):
            return
        path = getattr(event, "dest_path", "") or event.src_path
        if not str(path).endswith(_WATCHED_EXTENSIONS):
            return
        current_time = time.time()
        if current_time - self.last_trigger < self.debounce_seconds:
            return
        self.last_trigger = current_time
        print(f"\n🔄 File changed: {path}")
        # 透過 threadsafe 把 coroutine 丟進 loop（loop 在獨立執行緒中 run_forever）
        asyncio.run_coroutine_threadsafe(self.callback(), self.loop)


class SyncRunner:
    """watch 用：新的變更進來時取消進行中的 run，等它停在 icon 邊界後再重跑."""

    def __init__(self, args, config: dict):
        self.args = args
        self.config = config
        self.cancel: Optional[CancellationToken] = None
        self._lock: Optional[asyncio.Lock] = None

    async def __call__(self):
        if self._lock is None:
            self._lock = asyncio.Lock()
        if self.cancel is not None:
            self.cancel.cancel()
        cancel = CancellationToken()
        self.cancel = cancel
        async with self._lock:
            # 排隊期間又有更新的變更進來
            if cancel.is_cancelled():
                return None
            return await run_sync(self.args, self.config, cancel)


def cmd_watch(args, config: dict):
    """Watch: 監聽本機 checkout 變更並自動執行 sync."""
    local_root = args.local or config.get("upstream", {}).get("localRoot")
    if not local_root:
        print("❌ watch 需要本機 checkout：請使用 --local 或在 config 設定 upstream.localRoot。")
        return
    args.local = local_root
    print(f"👀 Watching for changes in '{local_root}'...")
    print("   Press Ctrl+C to stop.")

    # 在獨立執行緒中運行 event loop，避免主執行緒與 coroutine_threadsafe 競爭
    loop = asyncio.new_event_loop()
    runner = SyncRunner(args, config)

    def run_loop():
        asyncio.set_event_loop(loop)
        loop.run_forever()

    loop_thread = threading.Thread(target=run_loop, daemon=True)
    loop_thread.start()

    # 初始執行一次 sync（等待完成）
    future = asyncio.run_coroutine_threadsafe(runner(), loop)
    try:
        future.result(timeout=args.initial_timeout)
    except Exception as e:
        print(f"   ⚠️  Initial sync failed: {e}")

    event_handler = ChangeHandler(runner, loop, debounce=args.debounce)
    observer = Observer()
    observer.schedule(event_handler, path=local_root, recursive=True)
    observer.start()

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\n👋 Stopping watch...")
        if runner.cancel is not None:
            runner.cancel.cancel()
        observer.stop()
    finally:
        observer.join()
        loop.call_soon_threadsafe(loop.stop)


def _add_source_args(parser):
    parser.add_argument("--local", help="Local material-design-icons checkout (overrides upstream.localRoot)")
    parser.add_argument("--ref", help="Upstream branch, tag or commit (GitHub source only)")
    parser.add_argument("--verbose", action="store_true", help="Show debug messages")


def _add_plan_args(parser):
    parser.add_argument("--strategy", choices=STRATEGIES, help="Page planning strategy")
    parser.add_argument("--page-size", type=int, help="Max icons per page")
    parser.add_argument("--limit", type=int, help="Only process the first N icons")


def _add_sync_args(parser):
    parser.add_argument("--document", help="Document snapshot to sync into")
    parser.add_argument("--output", help="Where to write the synced snapshot (default: --document)")
    parser.add_argument("--trust-marker", action="store_true",
                        help="Skip icons whose commit marker matches without re-fetching SVGs")
    parser.add_argument("--quiet", action="store_true", help="Hide per-icon progress lines")


def main():
    parser = argparse.ArgumentParser(
        description="iconsync: Material Symbols icon families for Figma",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", "-c", default=DEFAULT_CONFIG_PATH, help="Config path")
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")

    plan_p = sub.add_parser("plan", help="Preview the page plan",
        epilog="Examples:\n  iconsync plan\n  iconsync plan --strategy hybrid --page-size 150",
        formatter_class=argparse.RawDescriptionHelpFormatter)
    _add_source_args(plan_p)
    _add_plan_args(plan_p)

    sync_p = sub.add_parser("sync", help="Upstream → document snapshot",
        epilog="Examples:\n  iconsync sync\n  iconsync sync --limit 20 --document ./icons.json\n  iconsync sync --ref 4.0.0",
        formatter_class=argparse.RawDescriptionHelpFormatter)
    _add_source_args(sync_p)
    _add_plan_args(sync_p)
    _add_sync_args(sync_p)

    audit_p = sub.add_parser("audit", help="Dry-run deprecation check against a Figma file",
        epilog="Examples:\n  iconsync audit --file-key ABC123\n  iconsync audit --file-key ABC123 --page 'Icons'",
        formatter_class=argparse.RawDescriptionHelpFormatter)
    _add_source_args(audit_p)
    audit_p.add_argument("--file-key", help="Figma file key")
    audit_p.add_argument("--page", action="append", help="Only audit this page (repeatable)")

    watch_p = sub.add_parser("watch", help="Watch a local checkout and re-sync on change",
        epilog="Examples:\n  iconsync watch --local ../material-design-icons",
        formatter_class=argparse.RawDescriptionHelpFormatter)
    _add_source_args(watch_p)
    _add_plan_args(watch_p)
    _add_sync_args(watch_p)
    watch_p.add_argument("--debounce", type=float, default=1.0, help="Seconds between re-syncs")
    watch_p.add_argument("--initial-timeout", type=float, default=600.0,
                         help="Max seconds to wait for the initial sync")

    args = parser.parse_args()
    config = load_config(args.config)

    if args.command == "plan":
        asyncio.run(cmd_plan(args, config))
    elif args.command == "sync":
        asyncio.run(cmd_sync(args, config))
    elif args.command == "audit":
        cmd_audit(args, config)
    elif args.command == "watch":
        cmd_watch(args, config)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
