"""
hl-packaging - build matrix driver and static library conversion tools.

Usage:
    # Build matrices (recipes live in configs/<recipe>/build_config.py)
    hl-packaging list
    hl-packaging matrix test_packaging_linux --source-dir ~/Halide
    hl-packaging matrix package_linux --source-dir ~/Halide --dry-run

    # Bundle LLVM's static libraries into one object library
    hl-packaging bundle-static --target Halide_LLVM \\
        --exports /usr/lib/llvm-18/lib/cmake/llvm/LLVMExports.cmake \\
        --library LLVMCore --library LLVMSupport --binary-dir build/llvm-bundle

    # Convert each static library to its own object library
    hl-packaging static-to-object --prefix obj_ \\
        --exports /usr/lib/llvm-18/lib/cmake/llvm/LLVMExports.cmake \\
        --library LLVMCore --binary-dir build/llvm-objects
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import env_manager
from archive_tool import ArchiveTool, parse_object_extensions
from build_matrix import MatrixBuilder
from bundle_static import bundle_static
from cmake_exports import ExportsReader
from cmake_runner import CMakeRunner
from cmake_writer import write_targets
from static_to_object import StaticToObjectConverter
from target_graph import TargetGraph, load_graph_module

logger = logging.getLogger(__name__)


def _load_graph(args) -> TargetGraph:
    if not args.exports and not args.graph:
        raise ValueError("Provide at least one --exports file or a --graph module")
    graph = load_graph_module(Path(args.graph)) if args.graph else TargetGraph()
    for exports in args.exports or []:
        ExportsReader(graph=graph).read(exports)
    return graph


def _object_extensions(args):
    if not args.object_ext:
        return None
    return parse_object_extensions(args.object_ext)


def cmd_list(args) -> int:
    builder = MatrixBuilder(source_dir=args.source_dir)
    for name in builder.list_recipes():
        cells = builder.expand(name)
        print(f"{name}: {', '.join(cell.name for cell in cells)}")
    return 0


def cmd_matrix(args) -> int:
    builder = MatrixBuilder(source_dir=args.source_dir)
    runner = CMakeRunner(
        cmake=args.cmake,
        ctest=args.ctest,
        dry_run=args.dry_run,
        capture_output=args.capture_output,
    )
    builder.run(args.recipe, runner=runner, only=args.only)
    return 0


def cmd_bundle_static(args) -> int:
    graph = _load_graph(args)
    binary_dir = Path(args.binary_dir).resolve()
    result = bundle_static(
        graph,
        args.target,
        args.library,
        ArchiveTool(args.ar),
        binary_dir,
        object_extensions=_object_extensions(args),
    )
    output = args.output or binary_dir / f"{args.target}-targets.cmake"
    write_targets(
        output, graph, result.created_targets,
        description=f"Bundle of {', '.join(args.library)}",
    )
    return 0


def cmd_static_to_object(args) -> int:
    graph = _load_graph(args)
    binary_dir = Path(args.binary_dir).resolve()
    converter = StaticToObjectConverter(
        graph,
        args.prefix,
        ArchiveTool(args.ar),
        binary_dir,
        object_extensions=_object_extensions(args),
    )
    for lib in args.library:
        name = converter.convert(lib)
        print(f"{lib} -> {name}")
    output = args.output or binary_dir / f"{args.prefix}targets.cmake"
    write_targets(
        output, graph, converter.created,
        description=f"Object libraries for {', '.join(args.library)}",
    )
    return 0


def _add_graph_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--exports", action="append", help="CMake export file to read targets from (repeatable)")
    parser.add_argument("--graph", type=str, help="Python module defining a TARGETS list")
    parser.add_argument("--library", action="append", required=True, help="Library to start from (repeatable)")
    parser.add_argument("--binary-dir", type=str, default=".", help="Directory for the stage directories")
    parser.add_argument("--output", type=str, help="CMake script to write the created targets to")
    parser.add_argument("--ar", type=str, help="Archiver to use (default: AR env var, then ar on PATH)")
    parser.add_argument("--object-ext", action="append", metavar="LANG=EXT",
                        help="Object file extension per language (repeatable, default C=.o CXX=.o)")


def build_parser() -> argparse.ArgumentParser:
    argp = argparse.ArgumentParser(prog="hl-packaging", description="Halide packaging helper")
    argp.add_argument("--log-level", type=str, default=None,
                      choices=["error", "warn", "info", "debug"],
                      help=f"Logging level (default: {env_manager.LOG_LEVEL_VAR} env var or info)")
    sub = argp.add_subparsers(dest="command", required=True)

    p = sub.add_parser("list", help="List build matrix recipes and their cells")
    p.add_argument("--source-dir", type=str, default=None, help="Halide source directory")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("matrix", help="Run a build matrix recipe")
    p.add_argument("recipe", type=str, help="Recipe name (see 'list')")
    p.add_argument("--source-dir", type=str, default=None, help="Halide source directory (default: cwd)")
    p.add_argument("--only", action="append", help="Only run this cell (repeatable)")
    p.add_argument("--dry-run", action="store_true", help="Print the commands without running them")
    p.add_argument("--capture-output", action="store_true", help="Capture child output into the debug log")
    p.add_argument("--cmake", type=str, help="cmake executable")
    p.add_argument("--ctest", type=str, help="ctest executable")
    p.set_defaults(func=cmd_matrix)

    p = sub.add_parser("bundle-static", help="Bundle imported static libraries into one object library")
    p.add_argument("--target", type=str, required=True, help="Name of the INTERFACE target to create")
    _add_graph_arguments(p)
    p.set_defaults(func=cmd_bundle_static)

    p = sub.add_parser("static-to-object", help="Convert imported static libraries to object libraries")
    p.add_argument("--prefix", type=str, required=True, help="Prefix for the created object libraries")
    _add_graph_arguments(p)
    p.set_defaults(func=cmd_static_to_object)

    return argp


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    env_manager.setup_logging(args.log_level, force=args.log_level is not None)

    try:
        return args.func(args)
    except KeyboardInterrupt:
        logger.error("Build cancelled")
        return 130
    except (RuntimeError, ValueError, OSError, ImportError) as e:
        logger.error(str(e))
        logger.debug("Traceback:", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
