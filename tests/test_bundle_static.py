"""Tests for bundle_static: breadth-first bundling into one object library."""
from __future__ import annotations

from pathlib import Path

import pytest

from archive_tool import ArchiveTool
from bundle_static import bundle_static
from conftest import requires_ar
from target_graph import TargetExistsError, TargetGraph, TargetType


class TestBundleStatic:
    def test_creates_interface_and_object_targets(self, llvm_graph, archive_tool, tmp_path):
        result = bundle_static(llvm_graph, "LLVM", ["LLVMCore"], archive_tool, tmp_path)

        interface = llvm_graph.get("LLVM")
        objects = llvm_graph.get("LLVM.obj")
        assert result.created_targets == ["LLVM.obj", "LLVM"]
        assert interface.type == TargetType.INTERFACE_LIBRARY
        assert not interface.imported
        assert objects.type == TargetType.OBJECT_LIBRARY
        assert objects.imported and objects.is_global
        assert interface.get_property("INTERFACE_SOURCES") == [
            "$<BUILD_INTERFACE:$<TARGET_OBJECTS:LLVM.obj>>"
        ]

    def test_walk_is_breadth_first_and_visits_once(self, llvm_graph, archive_tool, tmp_path):
        result = bundle_static(llvm_graph, "LLVM", ["LLVMCore"], archive_tool, tmp_path)

        assert result.bundled == ["LLVMCore", "LLVMBinaryFormat", "LLVMSupport", "LLVMDemangle"]
        assert result.linked == ["zstd_shared", "z", "-lpthread"]
        # LLVMSupport is reachable twice but unpacked once
        assert [Path(lib).name for lib, _ in archive_tool.calls] == [
            "libLLVMCore.a", "libLLVMBinaryFormat.a", "libLLVMSupport.a", "libLLVMDemangle.a",
        ]
        assert all(reuse for _, reuse in archive_tool.calls)

    def test_non_bundled_items_are_linked_to_interface(self, llvm_graph, archive_tool, tmp_path):
        bundle_static(llvm_graph, "LLVM", ["LLVMCore"], archive_tool, tmp_path)
        assert llvm_graph.get("LLVM").dependencies == ["zstd_shared", "z", "-lpthread"]

    def test_usage_requirements_are_merged(self, llvm_graph, archive_tool, tmp_path):
        bundle_static(llvm_graph, "LLVM", ["LLVMCore"], archive_tool, tmp_path)
        interface = llvm_graph.get("LLVM")
        assert interface.get_property("INTERFACE_COMPILE_DEFINITIONS") == ["LLVM_CORE=1"]
        assert interface.get_property("INTERFACE_INCLUDE_DIRECTORIES") == [
            "/opt/llvm/include", "/opt/llvm/include",
        ]

    def test_objects_and_configurations(self, llvm_graph, archive_tool, tmp_path):
        bundle_static(llvm_graph, "LLVM", ["LLVMCore"], archive_tool, tmp_path)
        objects = llvm_graph.get("LLVM.obj")

        assert objects.configurations == ["RELEASE"]
        recorded = objects.get_property("IMPORTED_OBJECTS_RELEASE")
        assert len(recorded) == 8
        assert recorded[0] == str(tmp_path / "libLLVMCore.obj" / "libLLVMCore_a.o")
        assert not objects.is_set("IMPORTED_OBJECTS")

    def test_source_graph_is_unchanged(self, llvm_graph, archive_tool, tmp_path):
        before = {t.name: {k: list(v) for k, v in t.properties.items()} for t in llvm_graph}
        bundle_static(llvm_graph, "LLVM", ["LLVMCore"], archive_tool, tmp_path)
        after = {name: llvm_graph.get(name).properties for name in before}
        assert before == after

    def test_plain_link_items_only(self, archive_tool, tmp_path):
        graph = TargetGraph()
        graph.add_library("local", TargetType.STATIC_LIBRARY, imported=False)
        result = bundle_static(graph, "B", ["m", "local", "m"], archive_tool, tmp_path)

        assert result.bundled == []
        assert result.linked == ["m", "local"]
        assert archive_tool.calls == []

    def test_disagreeing_properties_are_reported(self, llvm_graph, archive_tool, tmp_path, caplog):
        llvm_graph.get("LLVMCore").set_property("INTERFACE_POSITION_INDEPENDENT_CODE", "ON")
        llvm_graph.get("LLVMSupport").set_property("INTERFACE_POSITION_INDEPENDENT_CODE", "OFF")

        result = bundle_static(llvm_graph, "LLVM", ["LLVMCore"], archive_tool, tmp_path)

        assert result.disagreements == {"LLVMSupport": ["INTERFACE_POSITION_INDEPENDENT_CODE"]}
        assert llvm_graph.get("LLVM").get_property("INTERFACE_POSITION_INDEPENDENT_CODE") == ["ON"]
        assert "does not agree" in caplog.text

    def test_existing_target_name(self, llvm_graph, archive_tool, tmp_path):
        with pytest.raises(TargetExistsError):
            bundle_static(llvm_graph, "LLVMCore", ["LLVMSupport"], archive_tool, tmp_path)


@requires_ar
class TestBundleWithArchives:
    def test_unpacks_real_archives(self, make_archive, tmp_path):
        lib_a = make_archive("libA.a", {"a1.o": b"1", "a2.o": b"2"})
        lib_b = make_archive("libB.a", {"b1.o": b"3"})

        graph = TargetGraph()
        a = graph.add_library("A", TargetType.STATIC_LIBRARY, imported=True)
        a.set_property("IMPORTED_LOCATION", str(lib_a))
        a.set_property("INTERFACE_LINK_LIBRARIES", "B;dl")
        b = graph.add_library("B", TargetType.STATIC_LIBRARY, imported=True)
        b.set_property("IMPORTED_LOCATION", str(lib_b))

        binary_dir = tmp_path / "build"
        bundle_static(graph, "AB", ["A"], ArchiveTool("ar"), binary_dir)

        objects = [Path(p).name for p in graph.get("AB.obj").get_property("IMPORTED_OBJECTS")]
        assert objects == ["a1.o", "a2.o", "b1.o"]
        assert graph.get("AB").dependencies == ["dl"]
        assert (binary_dir / "libA.obj" / "a1.o").is_file()
