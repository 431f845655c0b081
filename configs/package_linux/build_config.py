# Linux release packaging
# Build directories and the install prefix are relative to the Halide source directory.
#
# Configures a static and a shared Halide build with the Ninja Multi-Config
# generator, builds Debug and Release of each, and installs all four into a
# single prefix. LLVM_DIR and Clang_DIR are taken from the environment.

_WITH_FLAGS = {
    "WITH_TESTS": False,
    "WITH_APPS": False,
    "WITH_TUTORIALS": False,
    "WITH_DOCS": True,
    "WITH_UTILS": False,
    "WITH_PYTHON_BINDINGS": False,
}

_CONFIGS = ["Debug", "Release"]

BUILD_CONFIG = {
    "generator": "Ninja Multi-Config",
    "env_cache": {
        "LLVM_DIR": "LLVM_DIR",
        "Clang_DIR": "Clang_DIR",
    },
    "cache": _WITH_FLAGS,
    "axes": [
        ("variant", {
            "static": {"BUILD_SHARED_LIBS": False},
            "shared": {"BUILD_SHARED_LIBS": True},
        }),
    ],
    "build_dir": "build/{variant}",
    "mode": "phased",
    "phases": [
        {"step": "configure"},
        {"step": "build", "cells": ["shared", "static"], "configs": _CONFIGS},
        {"step": "install", "cells": ["shared", "static"], "configs": _CONFIGS, "prefix": "build/install"},
    ],
}
