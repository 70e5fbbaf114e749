"""
iconsync — Material Symbols icon family 同步（Python 管線）

規劃 variant、偵測過時 / 重複 / 已淘汰的元件，並以最少破壞性的方式
（改名不刪除、指紋去重、可重跑）讓文件與上游 icon 來源保持一致。
"""

__version__ = "0.1.0"

from .variants import VariantAxes, VariantSpec, count, expand, find_best_default_variant, variant_name
from .fingerprint import fingerprint, fingerprint_svg, normalize_svg
from .naming import NameNormalizer, NamingConfig, is_deprecated, mark_deprecated, normalize
from .deprecation import DeprecationReconciler, DeprecationResult, FamilyState, deprecation_summary
from .tokens import TokenResolver, apply_family_style
from .planner import IconEntry, PagePlan, order_for_strategy, plan
from .document import HostCapabilities, InMemoryDocument, load_document, save_document
from .reporting import CancellationToken, CollectingSink, ConsoleSink, Reporter, RunStats
from .upstream import GitHubIconSource, LocalIconSource
from .orchestrator import OrchestratorOptions, SynthesisOrchestrator
from .figma_reader import FigmaAPIClient, FigmaToDocument
from .config import load_config, validate_config
from .errors import IconSyncError, PlanInvariantError, SystemicError, UpstreamUnavailableError

__all__ = [
    "__version__",
    "VariantAxes",
    "VariantSpec",
    "count",
    "expand",
    "find_best_default_variant",
    "variant_name",
    "fingerprint",
    "fingerprint_svg",
    "normalize_svg",
    "NameNormalizer",
    "NamingConfig",
    "is_deprecated",
    "mark_deprecated",
    "normalize",
    "DeprecationReconciler",
    "DeprecationResult",
    "FamilyState",
    "deprecation_summary",
    "TokenResolver",
    "apply_family_style",
    "IconEntry",
    "PagePlan",
    "order_for_strategy",
    "plan",
    "HostCapabilities",
    "InMemoryDocument",
    "load_document",
    "save_document",
    "CancellationToken",
    "CollectingSink",
    "ConsoleSink",
    "Reporter",
    "RunStats",
    "GitHubIconSource",
    "LocalIconSource",
    "OrchestratorOptions",
    "SynthesisOrchestrator",
    "FigmaAPIClient",
    "FigmaToDocument",
    "load_config",
    "validate_config",
    "IconSyncError",
    "PlanInvariantError",
    "SystemicError",
    "UpstreamUnavailableError",
]
