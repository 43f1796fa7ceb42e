"""test_export_writer.py

Atomic export directory: layout, permissions, replacement, failure.
"""

from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest

from conftest import ref
from nfgraph_core.api.errors import ExportError
from nfgraph_core.graph.compiler import ExportArtifact, GraphCompiler
from nfgraph_core.graph.graph_model import Graph
from nfgraph_core.export.writer import write_export


@pytest.fixture
def address_graph(chain_graph: Graph, tmp_path: Path) -> Graph:
    listing = tmp_path / "list.txt"
    listing.write_text("192.0.2.0/24\n", encoding="utf-8")
    chain_graph.disconnect(ref("a", "out"))
    chain_graph.add_node("core:file_ip_list", {"path": str(listing)}, node_id="block")
    chain_graph.connect(ref("a", "out"), ref("block", "in"))
    chain_graph.connect(ref("block", "non-match"), ref("localhost", "in"))
    return chain_graph


def _tree(root: Path):
    return sorted(str(p.relative_to(root)) for p in root.rglob("*"))


class TestExport:
    def test_layout(self, address_graph: Graph, tmp_path: Path) -> None:
        out = tmp_path / "out"
        artifact = GraphCompiler().export(address_graph, out)
        assert _tree(out) == ["apply.sh", "data", "data/block", "data/block/addresses.txt"]
        assert (out / "apply.sh").read_text(encoding="utf-8") == artifact.script
        assert (out / "data/block/addresses.txt").read_text(encoding="utf-8") == "192.0.2.0/24\n"

    def test_entry_point_is_executable(self, chain_graph: Graph, tmp_path: Path) -> None:
        out = tmp_path / "out"
        GraphCompiler().export(chain_graph, out)
        mode = (out / "apply.sh").stat().st_mode
        assert stat.S_IMODE(mode) == 0o755

    def test_replaces_existing_directory(self, chain_graph: Graph, tmp_path: Path) -> None:
        out = tmp_path / "out"
        out.mkdir()
        (out / "stale.txt").write_text("old", encoding="utf-8")
        GraphCompiler().export(chain_graph, out)
        assert _tree(out) == ["apply.sh"]
        assert [p.name for p in tmp_path.iterdir()] == ["out"]

    def test_two_exports_are_byte_identical(self, address_graph: Graph, tmp_path: Path) -> None:
        compiler = GraphCompiler()
        compiler.export(address_graph, tmp_path / "one")
        compiler.export(address_graph, tmp_path / "two")
        for rel in ("apply.sh", "data/block/addresses.txt"):
            assert (tmp_path / "one" / rel).read_bytes() == (tmp_path / "two" / rel).read_bytes()

    def test_failed_compile_leaves_old_export(self, chain_graph: Graph, tmp_path: Path) -> None:
        out = tmp_path / "out"
        compiler = GraphCompiler()
        compiler.export(chain_graph, out)
        before = (out / "apply.sh").read_bytes()

        chain_graph.disconnect(ref("a", "out"))
        chain_graph.add_node("core:source_port_filter", {"ports": "nope"}, node_id="bad")
        chain_graph.connect(ref("a", "out"), ref("bad", "in"))
        with pytest.raises(ExportError):
            compiler.export(chain_graph, out)
        assert (out / "apply.sh").read_bytes() == before
        assert sorted(p.name for p in tmp_path.iterdir()) == ["out"]

    def test_target_is_a_file(self, chain_graph: Graph, tmp_path: Path) -> None:
        target = tmp_path / "taken"
        target.write_text("x", encoding="utf-8")
        with pytest.raises(ExportError, match="not a directory"):
            GraphCompiler().export(chain_graph, target)
        assert target.read_text(encoding="utf-8") == "x"
        assert [p.name for p in tmp_path.iterdir()] == ["taken"]

    def test_write_artifact_directly(self, tmp_path: Path) -> None:
        artifact = ExportArtifact(
            entry_point="run.sh",
            script="#!/bin/sh\n",
            files={"data/n1/a.txt": "a\n", "data/n2/b.txt": "b\n"},
        )
        out = write_export(artifact, tmp_path / "nested" / "out")
        assert out == (tmp_path / "nested" / "out").absolute()
        assert _tree(out) == [
            "data",
            "data/n1",
            "data/n1/a.txt",
            "data/n2",
            "data/n2/b.txt",
            "run.sh",
        ]
        assert os.access(out / "run.sh", os.X_OK)

    def test_unencodable_content_cleans_up(self, tmp_path: Path) -> None:
        out = tmp_path / "out"
        out.mkdir()
        (out / "apply.sh").write_text("old\n", encoding="utf-8")
        artifact = ExportArtifact(
            entry_point="apply.sh",
            script="#!/bin/sh\n",
            files={"data/n/zone.txt": "\ud800\n"},
        )
        with pytest.raises(ExportError, match="cannot write export"):
            write_export(artifact, out)
        assert [p.name for p in tmp_path.iterdir()] == ["out"]
        assert (out / "apply.sh").read_text(encoding="utf-8") == "old\n"
