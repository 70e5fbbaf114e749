"""
錯誤分類

- 單一項目可恢復：IconSynthesisError（一個 icon 抓取/解析/建立失敗，計數後繼續）
- 單一操作可恢復：RenameError / BindingError（改名或綁定失敗，記錄保持原狀）
- 系統性：SystemicError（上游無法連線、規劃不變量被破壞 → 中止整個 run）
"""

from datetime import datetime, timezone
from typing import Optional


class IconSyncError(Exception):
    """所有 iconsync 錯誤的基底，帶 code 與 details."""

    def __init__(self, message: str, code: str = "UNKNOWN_ERROR", details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp,
        }


class IconSynthesisError(IconSyncError):
    """單一 icon 的抓取、解析或建立失敗."""

    def __init__(self, icon_name: str, reason: str, details: Optional[dict] = None):
        super().__init__(
            f'Failed to synthesize icon "{icon_name}": {reason}',
            "ICON_SYNTHESIS_ERROR",
            {"iconName": icon_name, "reason": reason, **(details or {})},
        )
        self.icon_name = icon_name


class RenameError(IconSyncError):
    def __init__(self, node_name: str, reason: str):
        super().__init__(
            f'Failed to rename "{node_name}": {reason}',
            "RENAME_ERROR",
            {"nodeName": node_name, "reason": reason},
        )


class BindingError(IconSyncError):
    def __init__(self, property_path: str, token_name: str, reason: str):
        super().__init__(
            f'Failed to bind "{token_name}" to {property_path}: {reason}',
            "BINDING_ERROR",
            {"propertyPath": property_path, "tokenName": token_name, "reason": reason},
        )


class FetchError(IconSyncError):
    """HTTP 或檔案讀取失敗."""

    def __init__(self, url: str, status_code: Optional[int] = None, details: Optional[dict] = None):
        suffix = f" ({status_code})" if status_code else ""
        super().__init__(
            f"Failed to fetch from {url}{suffix}",
            "FETCH_ERROR",
            {"url": url, "statusCode": status_code, **(details or {})},
        )
        self.url = url
        self.status_code = status_code


class SystemicError(IconSyncError):
    """中止整個 run 的錯誤；已提交的文件變更保留."""


class UpstreamUnavailableError(SystemicError):
    def __init__(self, reason: str, details: Optional[dict] = None):
        super().__init__(f"Upstream icon source unavailable: {reason}", "UPSTREAM_UNAVAILABLE", details)


class PlanInvariantError(SystemicError):
    def __init__(self, reason: str, details: Optional[dict] = None):
        super().__init__(f"Page plan invariant violated: {reason}", "PLAN_INVARIANT", details)
