"""
CLI 端對端測試：本機 checkout → sync → 文件快照；audit 用 mock Figma client
"""
import json
import sys
from unittest.mock import patch

import pytest

from iconsync.cli import main
from iconsync.upstream import CODEPOINT_PATHS, variant_path
from iconsync.variants import VariantSpec

SPEC = VariantSpec("rounded", 400, 0, 0, 24)


def make_checkout(root, icons):
    codepoints = root.joinpath(*CODEPOINT_PATHS[0].split("/"))
    codepoints.parent.mkdir(parents=True, exist_ok=True)
    codepoints.write_text("".join(f"{name} e{i:03x}\n" for i, name in enumerate(icons)), encoding="utf-8")
    for name in icons:
        svg = root.joinpath(*variant_path(name, SPEC).split("/"))
        svg.parent.mkdir(parents=True, exist_ok=True)
        svg.write_text(f'<svg><path d="{name}"/></svg>', encoding="utf-8")


def make_config(tmp_path, **extra):
    cfg = {
        "variants": {"styles": ["rounded"], "weights": [400], "fills": [0], "grades": [0], "opticalSizes": [24]},
        "planner": {"strategy": "alphabetical"},
        "export": {"snapshotDir": str(tmp_path / ".icon-sync")},
    }
    cfg.update(extra)
    path = tmp_path / "icon-sync.config.json"
    path.write_text(json.dumps(cfg), encoding="utf-8")
    return str(path)


def run_cli(*argv):
    with patch.object(sys, "argv", ["iconsync", *argv]):
        main()


def families(doc_path):
    with open(doc_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return {
        child["name"]: child
        for page in data["pages"]
        for child in page.get("children", [])
        if child["type"] == "COMPONENT_SET"
    }


# ─── plan / sync ─────────────────────────────────────────────────────────────

def test_plan_prints_pages(tmp_path, capsys):
    checkout = tmp_path / "icons"
    make_checkout(checkout, ["home", "search", "star"])
    run_cli("--config", make_config(tmp_path), "plan", "--local", str(checkout), "--page-size", "2")
    out = capsys.readouterr().out
    assert "Set 1: home – search" in out
    assert "Set 2: star – star" in out
    assert "3 icons on 2 pages" in out


def test_sync_writes_snapshot_and_reruns_cleanly(tmp_path, capsys):
    checkout = tmp_path / "icons"
    make_checkout(checkout, ["home", "search"])
    config = make_config(tmp_path)
    doc_path = tmp_path / ".icon-sync" / "icon-document.json"

    run_cli("--config", config, "sync", "--local", str(checkout))
    first = families(doc_path)
    assert sorted(first) == ["home", "search"]
    assert first["home"]["pluginData"]["git_commit_sha"].startswith("local-")
    assert "✅ Saved to" in capsys.readouterr().out

    run_cli("--config", config, "sync", "--local", str(checkout))
    assert "0 icons (0 created, 0 updated, 2 skipped" in capsys.readouterr().out


def test_sync_deprecates_removed_icon(tmp_path):
    checkout = tmp_path / "icons"
    make_checkout(checkout, ["home", "search"])
    # 上游縮小後頁名會變，靠頁面前綴找回上一次的頁面
    config = make_config(tmp_path, planner={"strategy": "alphabetical", "pagePrefix": "Icons / "})
    run_cli("--config", config, "sync", "--local", str(checkout))

    make_checkout(checkout, ["home"])
    run_cli("--config", config, "sync", "--local", str(checkout))
    assert sorted(families(tmp_path / ".icon-sync" / "icon-document.json")) == ["deprecated_search", "home"]


def test_sync_reports_missing_upstream(tmp_path, capsys):
    run_cli("--config", make_config(tmp_path), "sync", "--local", str(tmp_path / "empty"))
    assert "Sync aborted" in capsys.readouterr().out


# ─── audit ───────────────────────────────────────────────────────────────────

def test_audit_requires_token(tmp_path, monkeypatch, capsys):
    monkeypatch.delenv("FIGMA_TOKEN", raising=False)
    run_cli("--config", make_config(tmp_path), "audit", "--file-key", "ABC")
    assert "FIGMA_TOKEN" in capsys.readouterr().out


@patch("iconsync.cli.FigmaAPIClient")
def test_audit_lists_families_to_deprecate(mock_client_cls, tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("FIGMA_TOKEN", "figd_test")
    checkout = tmp_path / "icons"
    make_checkout(checkout, ["home"])
    mock_client_cls.return_value.get_file.return_value = {
        "document": {"children": [{
            "id": "0:1", "type": "CANVAS", "name": "Set 1: home – home",
            "children": [
                {"id": "1:1", "type": "COMPONENT_SET", "name": "home"},
                {"id": "1:2", "type": "COMPONENT_SET", "name": "menu"},
                {"id": "1:3", "type": "COMPONENT_SET", "name": "deprecated_old"},
            ],
        }, {
            "id": "0:2", "type": "CANVAS", "name": "Components",
            "children": [{"id": "2:1", "type": "COMPONENT_SET", "name": "Button"}],
        }]},
    }

    run_cli("--config", make_config(tmp_path), "audit", "--file-key", "ABC", "--local", str(checkout))
    out = capsys.readouterr().out
    assert "Found 3 existing families, 1 will be updated, 1 deprecated" in out
    assert "- menu" in out
    assert "1 families already deprecated" in out
    assert "Button" not in out


def test_version_flag(capsys):
    with pytest.raises(SystemExit):
        run_cli("--version")
    assert "0.1.0" in capsys.readouterr().out
