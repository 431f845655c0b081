# Linux packaging test matrix
# Build directories are relative to the Halide source directory.
#
# Halide | LLVM
# -------+--------
# static | static
# static | bundled
# static | shared
# shared | static
# shared | shared
#
# Bundling LLVM into a shared Halide is not a supported combination.

BUILD_CONFIG = {
    "generator": "Ninja",
    "cache": {
        "CMAKE_BUILD_TYPE": "Release",
        "WITH_TESTS": False,
        "WITH_TUTORIALS": False,
        "WITH_PYTHON_BINDINGS": False,
        "WITH_APPS": True,
        "WITH_DOCS": False,
        "WITH_UTILS": False,
    },
    "axes": [
        ("halide", {
            "static": {"BUILD_SHARED_LIBS": False},
            "shared": {"BUILD_SHARED_LIBS": True},
        }),
        ("llvm", {
            "static": {},
            "bundled": {"Halide_BUNDLE_LLVM": True},
            "shared": {"Halide_SHARED_LLVM": True},
        }),
    ],
    "exclude": [
        {"halide": "shared", "llvm": "bundled"},
    ],
    "build_dir": "build/release-{halide}-{llvm}",
    "mode": "per_cell",
    "phases": [
        {"step": "configure"},
        {"step": "build"},
        {"step": "test", "regex": "bgu", "verbose": True},
    ],
}
