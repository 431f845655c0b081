"""
Shared fixtures for the packaging tools.

Provides an LLVM-shaped target graph, a recording archive tool that never
shells out, and a helper that writes real ar archives.
"""
from __future__ import annotations

import shutil
import textwrap
from pathlib import Path

import pytest

from target_graph import TargetGraph, TargetType


# ── Archives ─────────────────────────────────────────────────────────────────

def write_ar_archive(path: Path, members: dict) -> Path:
    """Write a System V / GNU ar archive containing the given name -> bytes members."""
    out = bytearray(b"!<arch>\n")
    for name, data in members.items():
        header = (
            f"{name + '/':<16}"
            f"{0:<12}"
            f"{0:<6}"
            f"{0:<6}"
            f"{644:<8}"
            f"{len(data):<10}"
            "`\n"
        ).encode("ascii")
        assert len(header) == 60
        out += header + data
        if len(data) % 2:
            out += b"\n"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(bytes(out))
    return path


@pytest.fixture
def make_archive(tmp_path):
    """Factory: make_archive("libfoo.a", {"a.o": b"...", ...}) -> Path."""
    def _make(name: str, members: dict) -> Path:
        return write_ar_archive(tmp_path / "lib" / name, members)
    return _make


requires_ar = pytest.mark.skipif(shutil.which("ar") is None, reason="ar not available")


class RecordingArchiveTool:
    """
    Stands in for ArchiveTool in graph-walk tests.

    unpack_static_lib() returns <stage>/<member>.o paths derived from the
    archive name and records each call; nothing is extracted.
    """

    def __init__(self, ar_path: str = "/usr/bin/ar"):
        self.ar_path = ar_path
        self.calls = []
        self.validated = 0

    def validate(self):
        self.validated += 1

    def unpack_static_lib(self, library, binary_dir, object_extensions=None, reuse=True):
        self.calls.append((library, reuse))
        stem = Path(library).name.split(".", 1)[0]
        stage = Path(binary_dir) / f"{stem}.obj"
        return [str(stage / f"{stem}_a.o"), str(stage / f"{stem}_b.o")]


@pytest.fixture
def archive_tool():
    return RecordingArchiveTool()


# ── Graphs ───────────────────────────────────────────────────────────────────

def _static(graph, name, deps=(), configs=("RELEASE",), **props):
    target = graph.add_library(name, TargetType.STATIC_LIBRARY, imported=True)
    if configs:
        target.set_property("IMPORTED_CONFIGURATIONS", list(configs))
        for cfg in configs:
            target.set_property(f"IMPORTED_LOCATION_{cfg}", f"/opt/llvm/lib/lib{name}.a")
    if deps:
        target.set_property("INTERFACE_LINK_LIBRARIES", list(deps))
    for key, value in props.items():
        target.set_property(key, value)
    return target


@pytest.fixture
def llvm_graph():
    """
    LLVMCore -> LLVMBinaryFormat -> LLVMSupport -> LLVMDemangle
    LLVMCore -> LLVMSupport (diamond)
    LLVMSupport -> z, -lpthread (system libraries)
    LLVMCore -> zstd_shared (imported shared library)
    """
    graph = TargetGraph()
    _static(graph, "LLVMDemangle")
    _static(graph, "LLVMSupport", deps=["z", "-lpthread", "LLVMDemangle"],
            INTERFACE_INCLUDE_DIRECTORIES="/opt/llvm/include")
    _static(graph, "LLVMBinaryFormat", deps=["LLVMSupport"])
    shared = graph.add_library("zstd_shared", TargetType.SHARED_LIBRARY, imported=True)
    shared.set_property("IMPORTED_LOCATION", "/usr/lib/libzstd.so.1")
    _static(graph, "LLVMCore", deps=["LLVMBinaryFormat", "LLVMSupport", "zstd_shared"],
            INTERFACE_COMPILE_DEFINITIONS="LLVM_CORE=1",
            INTERFACE_INCLUDE_DIRECTORIES="/opt/llvm/include")
    return graph


# ── Export files ─────────────────────────────────────────────────────────────

LLVM_EXPORTS = textwrap.dedent("""\
    # Generated by CMake

    if("${CMAKE_MAJOR_VERSION}.${CMAKE_MINOR_VERSION}" LESS 2.8)
       message(FATAL_ERROR "CMake >= 2.8.3 required")
    endif()
    if(CMAKE_VERSION VERSION_LESS "2.8.3")
       message(FATAL_ERROR "CMake >= 2.8.3 required")
    endif()
    cmake_policy(PUSH)
    cmake_policy(VERSION 2.8.3...3.26)

    # Protect against multiple inclusion, which would fail when already imported targets are added once more.
    set(_cmake_targets_defined "")
    set(_cmake_targets_not_defined "")
    set(_cmake_expected_targets "")
    foreach(_cmake_expected_target IN ITEMS LLVMDemangle LLVMSupport LLVMCore)
      list(APPEND _cmake_expected_targets "${_cmake_expected_target}")
      if(TARGET "${_cmake_expected_target}")
        list(APPEND _cmake_targets_defined "${_cmake_expected_target}")
      else()
        list(APPEND _cmake_targets_not_defined "${_cmake_expected_target}")
      endif()
    endforeach()
    unset(_cmake_expected_target)
    if(_cmake_targets_defined STREQUAL _cmake_expected_targets)
      unset(_cmake_targets_defined)
      unset(_cmake_targets_not_defined)
      unset(_cmake_expected_targets)
      unset(CMAKE_IMPORT_FILE_VERSION)
      cmake_policy(POP)
      return()
    endif()
    if(NOT _cmake_targets_defined STREQUAL "")
      message(FATAL_ERROR "Some (but not all) targets in this export set were already defined.")
    endif()
    unset(_cmake_targets_defined)
    unset(_cmake_targets_not_defined)
    unset(_cmake_expected_targets)


    # Compute the installation prefix relative to this file.
    get_filename_component(_IMPORT_PREFIX "${CMAKE_CURRENT_LIST_FILE}" PATH)
    get_filename_component(_IMPORT_PREFIX "${_IMPORT_PREFIX}" PATH)
    get_filename_component(_IMPORT_PREFIX "${_IMPORT_PREFIX}" PATH)
    get_filename_component(_IMPORT_PREFIX "${_IMPORT_PREFIX}" PATH)
    if(_IMPORT_PREFIX STREQUAL "/")
      set(_IMPORT_PREFIX "")
    endif()

    # Create imported target LLVMDemangle
    add_library(LLVMDemangle STATIC IMPORTED)

    # Create imported target LLVMSupport
    add_library(LLVMSupport STATIC IMPORTED)

    set_target_properties(LLVMSupport PROPERTIES
      INTERFACE_LINK_LIBRARIES "rt;dl;-lpthread;m;LLVMDemangle"
    )

    # Create imported target LLVMCore
    add_library(LLVMCore STATIC IMPORTED)

    set_target_properties(LLVMCore PROPERTIES
      INTERFACE_INCLUDE_DIRECTORIES "${_IMPORT_PREFIX}/include"
      INTERFACE_LINK_LIBRARIES "LLVMSupport"
    )

    # Load information for each installed configuration.
    file(GLOB _cmake_config_files "${CMAKE_CURRENT_LIST_DIR}/LLVMExports-*.cmake")
    foreach(_cmake_config_file IN LISTS _cmake_config_files)
      include("${_cmake_config_file}")
    endforeach()
    unset(_cmake_config_file)
    unset(_cmake_config_files)

    # Cleanup temporary variables.
    set(_IMPORT_PREFIX)

    # Loop over all imported files and verify that they actually exist
    foreach(_cmake_target IN LISTS _cmake_import_check_targets)
      foreach(_cmake_file IN LISTS "_cmake_import_check_files_for_${_cmake_target}")
        if(NOT EXISTS "${_cmake_file}")
          message(FATAL_ERROR "The imported target \\"${_cmake_target}\\" references the file
       \\"${_cmake_file}\\"
    but this file does not exist.")
        endif()
      endforeach()
      unset(_cmake_file)
      unset("_cmake_import_check_files_for_${_cmake_target}")
    endforeach()
    unset(_cmake_target)
    unset(_cmake_import_check_targets)

    # This file does not depend on other imported targets which have
    # been exported from the same project but in a separate export set.

    # Commands beyond this point should not need to know the version.
    set(CMAKE_IMPORT_FILE_VERSION)
    cmake_policy(POP)
""")

LLVM_EXPORTS_RELEASE = textwrap.dedent("""\
    #----------------------------------------------------------------
    # Generated CMake target import file for configuration "Release".
    #----------------------------------------------------------------

    # Commands may need to know the format version.
    set(CMAKE_IMPORT_FILE_VERSION 1)

    # Import target "LLVMDemangle" for configuration "Release"
    set_property(TARGET LLVMDemangle APPEND PROPERTY IMPORTED_CONFIGURATIONS RELEASE)
    set_target_properties(LLVMDemangle PROPERTIES
      IMPORTED_LINK_INTERFACE_LANGUAGES_RELEASE "CXX"
      IMPORTED_LOCATION_RELEASE "${_IMPORT_PREFIX}/lib/libLLVMDemangle.a"
      )

    list(APPEND _cmake_import_check_targets LLVMDemangle )
    list(APPEND _cmake_import_check_files_for_LLVMDemangle "${_IMPORT_PREFIX}/lib/libLLVMDemangle.a" )

    # Import target "LLVMSupport" for configuration "Release"
    set_property(TARGET LLVMSupport APPEND PROPERTY IMPORTED_CONFIGURATIONS RELEASE)
    set_target_properties(LLVMSupport PROPERTIES
      IMPORTED_LINK_INTERFACE_LANGUAGES_RELEASE "C;CXX"
      IMPORTED_LOCATION_RELEASE "${_IMPORT_PREFIX}/lib/libLLVMSupport.a"
      )

    list(APPEND _cmake_import_check_targets LLVMSupport )
    list(APPEND _cmake_import_check_files_for_LLVMSupport "${_IMPORT_PREFIX}/lib/libLLVMSupport.a" )

    # Import target "LLVMCore" for configuration "Release"
    set_property(TARGET LLVMCore APPEND PROPERTY IMPORTED_CONFIGURATIONS RELEASE)
    set_target_properties(LLVMCore PROPERTIES
      IMPORTED_LINK_INTERFACE_LANGUAGES_RELEASE "CXX"
      IMPORTED_LOCATION_RELEASE "${_IMPORT_PREFIX}/lib/libLLVMCore.a"
      )

    list(APPEND _cmake_import_check_targets LLVMCore )
    list(APPEND _cmake_import_check_files_for_LLVMCore "${_IMPORT_PREFIX}/lib/libLLVMCore.a" )

    # Commands beyond this point should not need to know the version.
    set(CMAKE_IMPORT_FILE_VERSION)
""")


@pytest.fixture
def llvm_install(tmp_path):
    """A fake LLVM install prefix with export files under lib/cmake/llvm."""
    prefix = tmp_path / "llvm"
    cmake_dir = prefix / "lib" / "cmake" / "llvm"
    cmake_dir.mkdir(parents=True)
    (cmake_dir / "LLVMExports.cmake").write_text(LLVM_EXPORTS)
    (cmake_dir / "LLVMExports-release.cmake").write_text(LLVM_EXPORTS_RELEASE)
    return prefix
