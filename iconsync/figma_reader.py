"""
Figma REST API 讀取

讀取 Figma 檔案並轉成 InMemoryDocument，供 audit 做唯讀的 deprecation 預覽。
"""

from typing import Optional

import requests

from .document import FAMILY, FRAME, GROUP, PAGE, SECTION, VARIANT, InMemoryDocument

DEFAULT_PLUGIN_NAMESPACE = "icon-sync"


class FigmaAPIClient:
    """Figma REST API 唯讀封裝."""

    BASE_URL = "https://api.figma.com/v1"

    def __init__(self, token: str, timeout: float = 60.0):
        self.token = token
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            "X-Figma-Token": token,
            "Content-Type": "application/json",
        })

    def get_file(self, file_key: str, node_ids: Optional[list] = None, plugin_data: str = "shared") -> dict:
        url = f"{self.BASE_URL}/files/{file_key}"
        params = {}
        if node_ids:
            params["ids"] = ",".join(node_ids)
        if plugin_data:
            params["plugin_data"] = plugin_data
        resp = self.session.get(url, params=params, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()


class FigmaToDocument:
    """將 Figma API 節點樹轉成 InMemoryDocument（只保留 icon 同步用得到的結構）."""

    _TYPE_MAP = {
        "FRAME": FRAME,
        "GROUP": GROUP,
        "SECTION": SECTION,
        "COMPONENT_SET": FAMILY,
        "COMPONENT": VARIANT,
    }

    def __init__(self, plugin_namespace: str = DEFAULT_PLUGIN_NAMESPACE):
        self.plugin_namespace = plugin_namespace

    def convert(self, figma_file: dict, page_names: Optional[list] = None) -> InMemoryDocument:
        doc = InMemoryDocument()
        document = figma_file.get("document", {})
        for page in document.get("children", []):
            if page.get("type", "CANVAS") != "CANVAS":
                continue
            if page_names and page.get("name") not in page_names:
                continue
            page_id = doc.add_node(None, PAGE, page.get("name", "Untitled"), id=page.get("id"))
            for child in page.get("children", []):
                self._convert_node(doc, child, page_id)
        return doc

    def _convert_node(self, doc: InMemoryDocument, figma_node: dict, parent_id: str) -> None:
        node_type = self._TYPE_MAP.get(figma_node.get("type", ""))
        # 向量、文字等葉節點與 icon 結構無關
        if node_type is None:
            return
        shared_data = figma_node.get("sharedPluginData", {})
        our_data = shared_data.get(self.plugin_namespace, {})
        node_id = doc.add_node(
            parent_id,
            node_type,
            figma_node.get("name", "Unnamed"),
            id=figma_node.get("id"),
            metadata=dict(our_data),
        )
        for child in figma_node.get("children", []):
            self._convert_node(doc, child, node_id)
