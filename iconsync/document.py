"""
文件樹能力介面與記憶體實作

核心只透過 DocumentTree / TokenStore 這兩個窄介面操作宿主文件；
每個方法都是 async（= 一個暫停點），呼叫之後不能假設先前拿到的節點還在。

InMemoryDocument 同時實作兩個介面，可由 JSON 快照載入 / 存回，
讓宿主 plugin 匯出目前文件樹、匯入同步後的 payload。
"""

import copy
import json
import os
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from .errors import IconSyncError

# 節點類型（與 Figma node.type 相同字串）
PAGE = "PAGE"
FRAME = "FRAME"
GROUP = "GROUP"
SECTION = "SECTION"
FAMILY = "COMPONENT_SET"
VARIANT = "COMPONENT"

# 持久化在節點上的 metadata key
GIT_COMMIT_SHA = "git_commit_sha"
SVG_HASH = "svg_hash"

LIBRARY = "library"
LOCAL = "local"


@dataclass(frozen=True)
class NodeInfo:
    """節點的唯讀快照；只在下一個暫停點之前有效."""
    id: str
    type: str
    name: str
    parent_id: Optional[str] = None


@dataclass(frozen=True)
class TokenInfo:
    name: str
    handle: str
    collection: str = ""


@dataclass(frozen=True)
class HostCapabilities:
    """建構時解析一次的宿主能力描述，取代每個呼叫點的執行期探測."""
    supports_library_tokens: bool = True
    supports_local_tokens: bool = True
    supports_default_variant: bool = True
    supports_metadata: bool = True


class DocumentTree(Protocol):
    async def list_pages(self) -> list[NodeInfo]: ...
    async def find_page(self, name: str) -> Optional[NodeInfo]: ...
    async def create_page(self, name: str) -> NodeInfo: ...
    async def get(self, node_id: str) -> Optional[NodeInfo]: ...
    async def exists(self, node_id: str) -> bool: ...
    async def children(self, node_id: str) -> list[NodeInfo]: ...
    async def create_variant(self, parent_id: str, name: str, svg: str) -> NodeInfo: ...
    async def get_svg(self, node_id: str) -> str: ...
    async def update_variant(self, node_id: str, svg: str) -> None: ...
    async def combine_as_family(self, variant_ids: list[str], parent_id: str, name: str) -> NodeInfo: ...
    async def add_to_family(self, family_id: str, variant_id: str) -> None: ...
    async def rename(self, node_id: str, new_name: str) -> None: ...
    async def get_metadata(self, node_id: str, key: str) -> str: ...
    async def set_metadata(self, node_id: str, key: str, value: str) -> None: ...
    async def remove(self, node_id: str) -> None: ...
    async def get_default_variant(self, family_id: str) -> Optional[str]: ...
    async def set_default_variant(self, family_id: str, variant_id: str) -> None: ...


class TokenStore(Protocol):
    async def list_tokens(self, scope: str) -> list[TokenInfo]: ...
    async def bind(self, node_id: str, property_path: str, handle: str) -> None: ...
    async def bound_token(self, node_id: str, property_path: str) -> Optional[str]: ...
    async def apply_static(self, node_id: str, property_path: str, value: Any) -> None: ...


async def find_all(doc: DocumentTree, root_id: str, node_type: str) -> list[NodeInfo]:
    """遞迴走訪 root 底下所有節點（不只第一層），依樹狀順序回傳指定類型."""
    found = []
    for child in await doc.children(root_id):
        if child.type == node_type:
            found.append(child)
        found.extend(await find_all(doc, child.id, node_type))
    return found


class DocumentError(IconSyncError):
    def __init__(self, message: str, node_id: str = ""):
        super().__init__(message, "DOCUMENT_ERROR", {"nodeId": node_id})


# ─── 記憶體實作 ──────────────────────────────────────────────────────────────

@dataclass
class _Node:
    id: str
    type: str
    name: str
    parent: Optional[str] = None
    children: list = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    svg: str = ""
    bindings: dict = field(default_factory=dict)
    styles: dict = field(default_factory=dict)
    default_variant: Optional[str] = None


class InMemoryDocument:
    """DocumentTree + TokenStore 的記憶體實作."""

    def __init__(self, capabilities: Optional[HostCapabilities] = None):
        self.capabilities = capabilities or HostCapabilities()
        self._nodes: dict[str, _Node] = {}
        self._pages: list[str] = []
        self._next_id = 1
        self.tokens: dict[str, dict[str, TokenInfo]] = {LIBRARY: {}, LOCAL: {}}
        self.operations: Counter = Counter()
        # 測試用故障注入：名稱在集合內的節點 rename 時丟例外
        self.fail_renames: set[str] = set()
        self.fail_creates: set[str] = set()

    # ── 內部 ──
    def _new_id(self) -> str:
        node_id = f"{self._next_id}:0"
        self._next_id += 1
        while node_id in self._nodes:
            node_id = f"{self._next_id}:0"
            self._next_id += 1
        return node_id

    def _require(self, node_id: str) -> _Node:
        node = self._nodes.get(node_id)
        if node is None:
            raise DocumentError(f"Node {node_id} does not exist", node_id)
        return node

    def _info(self, node: _Node) -> NodeInfo:
        return NodeInfo(node.id, node.type, node.name, node.parent)

    def _attach(self, node: _Node, parent_id: Optional[str]) -> None:
        if node.parent is not None and node.parent in self._nodes:
            siblings = self._nodes[node.parent].children
            if node.id in siblings:
                siblings.remove(node.id)
        node.parent = parent_id
        if parent_id is not None:
            self._require(parent_id).children.append(node.id)

    def add_node(self, parent_id: Optional[str], node_type: str, name: str, **attrs) -> str:
        """直接建立節點（建立測試場景 / 載入快照用，不計入 operations）."""
        node = _Node(id=attrs.pop("id", None) or self._new_id(), type=node_type, name=name, **attrs)
        self._nodes[node.id] = node
        if node_type == PAGE:
            self._pages.append(node.id)
        else:
            self._attach(node, parent_id)
        return node.id

    def add_token(self, scope: str, name: str, handle: str, collection: str = "") -> None:
        self.tokens[scope][name] = TokenInfo(name, handle, collection)

    def node(self, node_id: str) -> _Node:
        return self._require(node_id)

    def find_by_name(self, name: str, node_type: Optional[str] = None) -> list[str]:
        return [
            n.id for n in self._nodes.values()
            if n.name == name and (node_type is None or n.type == node_type)
        ]

    # ── DocumentTree ──
    async def list_pages(self) -> list[NodeInfo]:
        return [self._info(self._nodes[p]) for p in self._pages]

    async def find_page(self, name: str) -> Optional[NodeInfo]:
        for page_id in self._pages:
            if self._nodes[page_id].name == name:
                return self._info(self._nodes[page_id])
        return None

    async def create_page(self, name: str) -> NodeInfo:
        self.operations["create_page"] += 1
        page_id = self.add_node(None, PAGE, name)
        return self._info(self._nodes[page_id])

    async def get(self, node_id: str) -> Optional[NodeInfo]:
        node = self._nodes.get(node_id)
        return self._info(node) if node else None

    async def exists(self, node_id: str) -> bool:
        return node_id in self._nodes

    async def children(self, node_id: str) -> list[NodeInfo]:
        return [self._info(self._nodes[c]) for c in self._require(node_id).children]

    async def create_variant(self, parent_id: str, name: str, svg: str) -> NodeInfo:
        self._require(parent_id)
        if name in self.fail_creates:
            raise DocumentError(f"Cannot create variant {name}", parent_id)
        self.operations["create_variant"] += 1
        node_id = self.add_node(parent_id, VARIANT, name, svg=svg)
        return self._info(self._nodes[node_id])

    async def get_svg(self, node_id: str) -> str:
        return self._require(node_id).svg

    async def update_variant(self, node_id: str, svg: str) -> None:
        node = self._require(node_id)
        if node.type != VARIANT:
            raise DocumentError(f"Node {node_id} is not a variant", node_id)
        self.operations["update_variant"] += 1
        node.svg = svg

    async def combine_as_family(self, variant_ids: list[str], parent_id: str, name: str) -> NodeInfo:
        if not variant_ids:
            raise DocumentError("Cannot combine an empty variant list", parent_id)
        self._require(parent_id)
        self.operations["combine_as_family"] += 1
        family_id = self.add_node(parent_id, FAMILY, name)
        for variant_id in variant_ids:
            self._attach(self._require(variant_id), family_id)
        return self._info(self._nodes[family_id])

    async def add_to_family(self, family_id: str, variant_id: str) -> None:
        family = self._require(family_id)
        if family.type != FAMILY:
            raise DocumentError(f"Node {family_id} is not a family", family_id)
        self.operations["add_to_family"] += 1
        self._attach(self._require(variant_id), family_id)

    async def rename(self, node_id: str, new_name: str) -> None:
        node = self._require(node_id)
        if node.name in self.fail_renames:
            raise DocumentError(f"Rename of {node.name} rejected", node_id)
        self.operations["rename"] += 1
        node.name = new_name

    async def get_metadata(self, node_id: str, key: str) -> str:
        return self._require(node_id).metadata.get(key, "")

    async def set_metadata(self, node_id: str, key: str, value: str) -> None:
        self.operations["set_metadata"] += 1
        self._require(node_id).metadata[key] = value

    async def remove(self, node_id: str) -> None:
        node = self._require(node_id)
        self.operations["remove"] += 1
        for child_id in list(node.children):
            await self.remove(child_id)
        if node.parent is not None and node.parent in self._nodes:
            parent = self._nodes[node.parent]
            parent.children.remove(node_id)
            if parent.default_variant == node_id:
                parent.default_variant = None
        if node_id in self._pages:
            self._pages.remove(node_id)
        del self._nodes[node_id]

    async def get_default_variant(self, family_id: str) -> Optional[str]:
        return self._require(family_id).default_variant

    async def set_default_variant(self, family_id: str, variant_id: str) -> None:
        family = self._require(family_id)
        if variant_id not in family.children:
            raise DocumentError(f"{variant_id} is not a child of {family_id}", family_id)
        family.default_variant = variant_id

    # ── TokenStore ──
    async def list_tokens(self, scope: str) -> list[TokenInfo]:
        return list(self.tokens.get(scope, {}).values())

    async def bind(self, node_id: str, property_path: str, handle: str) -> None:
        # 以 property path 為 key，重複綁定只覆寫、不會累加
        self._require(node_id).bindings[property_path] = handle
        self.operations["bind"] += 1

    async def bound_token(self, node_id: str, property_path: str) -> Optional[str]:
        return self._require(node_id).bindings.get(property_path)

    async def apply_static(self, node_id: str, property_path: str, value: Any) -> None:
        node = self._require(node_id)
        node.bindings.pop(property_path, None)
        node.styles[property_path] = value
        self.operations["apply_static"] += 1

    # ── 序列化 ──
    def to_dict(self) -> dict:
        def dump(node_id: str) -> dict:
            node = self._nodes[node_id]
            data: dict = {"id": node.id, "type": node.type, "name": node.name}
            if node.metadata:
                data["pluginData"] = dict(node.metadata)
            if node.svg:
                data["svg"] = node.svg
            if node.bindings:
                data["bindings"] = dict(node.bindings)
            if node.styles:
                data["styles"] = copy.deepcopy(node.styles)
            if node.default_variant:
                data["defaultVariant"] = node.default_variant
            if node.children:
                data["children"] = [dump(c) for c in node.children]
            return data

        return {
            "version": 1,
            "pages": [dump(p) for p in self._pages],
            "variables": {
                scope: [
                    {"name": t.name, "id": t.handle, "collection": t.collection}
                    for t in tokens.values()
                ]
                for scope, tokens in self.tokens.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict, capabilities: Optional[HostCapabilities] = None) -> "InMemoryDocument":
        doc = cls(capabilities)

        def load(raw: dict, parent_id: Optional[str]) -> None:
            node_id = doc.add_node(
                parent_id,
                raw.get("type", FRAME),
                raw.get("name", ""),
                id=raw.get("id"),
                metadata=dict(raw.get("pluginData") or {}),
                svg=raw.get("svg", ""),
                bindings=dict(raw.get("bindings") or {}),
                styles=dict(raw.get("styles") or {}),
                default_variant=raw.get("defaultVariant"),
            )
            for child in raw.get("children", []):
                load(child, node_id)

        for page in data.get("pages", []):
            page = dict(page, type=PAGE)
            load(page, None)
        for scope, tokens in (data.get("variables") or {}).items():
            if scope not in doc.tokens:
                continue
            for token in tokens:
                doc.add_token(scope, token["name"], token["id"], token.get("collection", ""))
        # 讓後續新建節點的 id 不與快照衝突
        doc._next_id = len(doc._nodes) + 1
        return doc


def load_document(path: str, capabilities: Optional[HostCapabilities] = None) -> InMemoryDocument:
    """載入文件快照；不存在則回傳空文件."""
    if not os.path.exists(path):
        return InMemoryDocument(capabilities)
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise DocumentError(f"'{path}' must contain a JSON object")
    return InMemoryDocument.from_dict(data, capabilities)


def save_document(doc: InMemoryDocument, path: str) -> str:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(doc.to_dict(), f, indent=2, ensure_ascii=False)
    return path
