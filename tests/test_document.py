"""
記憶體文件模型測試：走訪、family 組合、快照存取
"""
import asyncio
import json

import pytest

from iconsync.document import (
    FAMILY,
    FRAME,
    LIBRARY,
    PAGE,
    SECTION,
    VARIANT,
    DocumentError,
    InMemoryDocument,
    find_all,
    load_document,
    save_document,
)


def build_doc():
    doc = InMemoryDocument()
    page_id = doc.add_node(None, PAGE, "Icons")
    section_id = doc.add_node(page_id, SECTION, "Archive")
    frame_id = doc.add_node(section_id, FRAME, "Old")
    family_id = doc.add_node(frame_id, FAMILY, "star")
    doc.add_node(family_id, VARIANT, "Style=Rounded, Weight=400, Fill=Off, Grade=Normal, Optical size=24dp",
                 svg="<svg/>", metadata={"svg_hash": "0000abcd"})
    doc.add_node(page_id, FAMILY, "home")
    return doc, page_id, family_id


def test_find_all_descends_into_containers_in_tree_order():
    doc, page_id, _ = build_doc()
    families = asyncio.run(find_all(doc, page_id, FAMILY))
    assert [f.name for f in families] == ["star", "home"]


def test_find_all_reaches_variants_inside_families():
    doc, page_id, family_id = build_doc()
    variants = asyncio.run(find_all(doc, page_id, VARIANT))
    assert [v.parent_id for v in variants] == [family_id]


def test_combine_and_add_to_family():
    doc = InMemoryDocument()
    page_id = doc.add_node(None, PAGE, "Icons")

    async def run():
        a = await doc.create_variant(page_id, "a", "<svg>a</svg>")
        b = await doc.create_variant(page_id, "b", "<svg>b</svg>")
        family = await doc.combine_as_family([a.id], page_id, "home")
        await doc.add_to_family(family.id, b.id)
        await doc.set_default_variant(family.id, b.id)
        return family, [c.name for c in await doc.children(family.id)], await doc.children(page_id)

    family, names, page_children = asyncio.run(run())
    assert names == ["a", "b"]
    assert [c.id for c in page_children] == [family.id]
    assert doc.node(family.id).default_variant is not None


def test_default_variant_must_be_child():
    doc, page_id, family_id = build_doc()
    other = doc.find_by_name("home", FAMILY)[0]
    with pytest.raises(DocumentError):
        asyncio.run(doc.set_default_variant(family_id, other))


def test_remove_is_recursive():
    doc, _, family_id = build_doc()
    variant_id = doc.node(family_id).children[0]
    asyncio.run(doc.remove(family_id))
    assert not asyncio.run(doc.exists(family_id))
    assert not asyncio.run(doc.exists(variant_id))


def test_missing_node_raises_document_error():
    with pytest.raises(DocumentError):
        asyncio.run(InMemoryDocument().rename("99:0", "x"))


# ─── 快照 ────────────────────────────────────────────────────────────────────

def test_snapshot_round_trip(tmp_path):
    doc, _, family_id = build_doc()
    doc.add_token(LIBRARY, "Schemes/primary", "lib:1", "M3")
    asyncio.run(doc.set_metadata(family_id, "git_commit_sha", "abc"))
    asyncio.run(doc.apply_static(family_id, "cornerRadius", 12))
    path = save_document(doc, str(tmp_path / "snap" / "doc.json"))

    loaded = load_document(path)
    assert loaded.to_dict() == doc.to_dict()
    assert loaded.node(family_id).metadata == {"git_commit_sha": "abc"}
    assert asyncio.run(loaded.list_tokens(LIBRARY))[0].handle == "lib:1"

    # 載入後新建節點不會撞到舊 id
    page = asyncio.run(loaded.create_page("New"))
    assert page.id not in doc._nodes


def test_snapshot_uses_figma_style_keys(tmp_path):
    doc, _, _ = build_doc()
    path = save_document(doc, str(tmp_path / "doc.json"))
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    variant = data["pages"][0]["children"][0]["children"][0]["children"][0]["children"][0]
    assert variant["type"] == "COMPONENT"
    assert variant["pluginData"] == {"svg_hash": "0000abcd"}


def test_load_missing_snapshot_is_empty(tmp_path):
    doc = load_document(str(tmp_path / "none.json"))
    assert asyncio.run(doc.list_pages()) == []


def test_load_rejects_non_object(tmp_path):
    path = tmp_path / "doc.json"
    path.write_text("[]", encoding="utf-8")
    with pytest.raises(DocumentError):
        load_document(str(path))
