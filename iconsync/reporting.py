"""
進度 / 結果事件輸出

核心不直接 print，也不使用全域 logger：所有訊息都以 Event 形式送進
建構時注入的 sink。Reporter 依固定的嚴重度門檻過濾
（DEBUG < INFO < WARNING < ERROR），進度與統計事件一律通過。
"""

import threading
import time
from dataclasses import asdict, dataclass, field
from enum import IntEnum
from typing import Callable, Optional, Protocol


class Severity(IntEnum):
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40


# 事件種類
PROGRESS = "progress"
CATEGORY_COMPLETE = "category_complete"
STATS = "stats"
LOG = "log"


@dataclass
class Event:
    kind: str
    message: str = ""
    severity: Severity = Severity.INFO
    data: dict = field(default_factory=dict)


class EventSink(Protocol):
    def emit(self, event: Event) -> None: ...


@dataclass
class RunStats:
    """一次 run 的最終統計."""
    icons_generated: int = 0
    pages_created: int = 0
    time_elapsed: float = 0.0
    icons_created: int = 0
    icons_updated: int = 0
    icons_skipped: int = 0
    icons_failed: int = 0
    variants_created: int = 0
    variants_updated: int = 0
    variants_reused: int = 0
    deprecated: int = 0
    rename_failures: int = 0
    token_fallbacks: int = 0
    cancelled: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    def summary(self) -> str:
        state = "cancelled" if self.cancelled else "done"
        return (
            f"{state}: {self.icons_generated} icons "
            f"({self.icons_created} created, {self.icons_updated} updated, "
            f"{self.icons_skipped} skipped, {self.icons_failed} failed) "
            f"on {self.pages_created} new pages in {self.time_elapsed:.1f}s"
        )


class Reporter:
    """嚴重度過濾後轉送到 sink；sink 為 None 時所有訊息丟棄."""

    def __init__(self, sink: Optional[EventSink] = None, min_severity: Severity = Severity.INFO):
        self.sink = sink
        self.min_severity = min_severity

    def _emit(self, event: Event) -> None:
        if self.sink is None:
            return
        if event.kind == LOG and event.severity < self.min_severity:
            return
        self.sink.emit(event)

    def debug(self, message: str, **data) -> None:
        self._emit(Event(LOG, message, Severity.DEBUG, data))

    def info(self, message: str, **data) -> None:
        self._emit(Event(LOG, message, Severity.INFO, data))

    def warning(self, message: str, **data) -> None:
        self._emit(Event(LOG, message, Severity.WARNING, data))

    def error(self, message: str, **data) -> None:
        self._emit(Event(LOG, message, Severity.ERROR, data))

    def progress(self, message: str, fraction: float, **data) -> None:
        data["fraction"] = max(0.0, min(1.0, fraction))
        self._emit(Event(PROGRESS, message, Severity.INFO, data))

    def category_complete(self, page_name: str, icons: int) -> None:
        self._emit(Event(CATEGORY_COMPLETE, f"Completed {page_name}", Severity.INFO,
                         {"page": page_name, "icons": icons}))

    def stats(self, stats: RunStats) -> None:
        self._emit(Event(STATS, stats.summary(), Severity.INFO, stats.to_dict()))


class ProgressTracker:
    """以 icon 為單位累計完成數，每個 icon 結束送出一次進度."""

    def __init__(self, reporter: Reporter, total_icons: int):
        self.reporter = reporter
        self.total_icons = total_icons
        self.completed_icons = 0
        self.current_icon = ""

    @property
    def fraction(self) -> float:
        if self.total_icons <= 0:
            return 1.0
        return self.completed_icons / self.total_icons

    def icon_complete(self, icon_name: str, message: Optional[str] = None) -> None:
        self.completed_icons += 1
        self.current_icon = icon_name
        self.reporter.progress(message or f"✓ {icon_name}", self.fraction, currentIcon=icon_name,
                               completedIcons=self.completed_icons, totalIcons=self.total_icons)


class CancellationToken:
    """可由其他執行緒（UI、watch handler）設定的取消旗標."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()


# ─── Sink 實作 ───────────────────────────────────────────────────────────────

_ICONS = {
    Severity.DEBUG: "   ·",
    Severity.INFO: "   ℹ️ ",
    Severity.WARNING: "   ⚠️ ",
    Severity.ERROR: "   ❌",
}


class ConsoleSink:
    """CLI 用：印出縮排 + emoji 的狀態列."""

    def __init__(self, printer: Callable[[str], None] = print, show_progress: bool = True):
        self.printer = printer
        self.show_progress = show_progress

    def emit(self, event: Event) -> None:
        if event.kind == PROGRESS:
            if not self.show_progress:
                return
            pct = int(round(event.data.get("fraction", 0.0) * 100))
            self.printer(f"   [{pct:3d}%] {event.message}")
        elif event.kind == CATEGORY_COMPLETE:
            self.printer(f"   ✅ {event.message} ({event.data.get('icons', 0)} icons)")
        elif event.kind == STATS:
            self.printer(f"   📊 {event.message}")
        else:
            self.printer(f"{_ICONS.get(event.severity, '   ')} {event.message}")


class CollectingSink:
    """測試與 dry-run 用：把事件留在記憶體."""

    def __init__(self):
        self.events: list[Event] = []

    def emit(self, event: Event) -> None:
        self.events.append(event)

    def of_kind(self, kind: str) -> list[Event]:
        return [e for e in self.events if e.kind == kind]

    def messages(self, min_severity: Severity = Severity.DEBUG) -> list[str]:
        return [e.message for e in self.events if e.kind == LOG and e.severity >= min_severity]


class Stopwatch:
    def __init__(self):
        self._start = time.monotonic()

    def elapsed(self) -> float:
        return time.monotonic() - self._start
