"""
Bundle a set of IMPORTED STATIC libraries into one IMPORTED OBJECT library.

This is useful when a static library produced by your project depends
privately on a 3rd-party static library that is tricky to build or
distribute (LLVM, for Halide). Linking the bundle privately into your static
library includes the third-party objects in it, and the file dependencies on
the third-party archives are dropped.

bundle_static() creates two targets:
    <target>      INTERFACE library carrying the merged usage requirements
                  and the non-bundled link items
    <target>.obj  IMPORTED GLOBAL OBJECT library holding every object file
                  unpacked from the bundled archives

The walk is breadth-first over INTERFACE_LINK_LIBRARIES; each library is
visited once, so diamonds in the dependency graph are unpacked once.
"""

import logging
from collections import deque
from pathlib import Path
from typing import Dict, List, Optional

from archive_tool import ArchiveTool
from property_transfer import (
    APPEND_PROPERTIES,
    SAME_INTERFACE_PROPERTIES,
    SAME_OBJECT_PROPERTIES,
    describe,
    merge_configurations,
    transfer_append,
    transfer_location,
    transfer_same,
)
from target_graph import TargetGraph, TargetType

logger = logging.getLogger(__name__)


class BundleResult:
    """Outcome of bundle_static()."""

    def __init__(self, interface_target: str, object_target: str):
        self.interface_target = interface_target
        self.object_target = object_target
        self.bundled: List[str] = []
        self.linked: List[str] = []
        self.disagreements: Dict[str, List[str]] = {}

    @property
    def created_targets(self) -> List[str]:
        return [self.object_target, self.interface_target]

    def __repr__(self) -> str:
        return (
            f"BundleResult({self.interface_target!r}, bundled={len(self.bundled)}, "
            f"linked={len(self.linked)})"
        )


def object_target_name(target: str) -> str:
    return f"{target}.obj"


def bundle_static(
    graph: TargetGraph,
    target: str,
    libraries: List[str],
    archive_tool: ArchiveTool,
    binary_dir: Path,
    object_extensions: Optional[Dict[str, str]] = None,
) -> BundleResult:
    """
    Bundle the transitive closure of imported static libraries.

    Args:
        graph: Graph containing the libraries; the two new targets are added to it
        target: Name of the INTERFACE target to create
        libraries: Libraries (targets or plain link items) to start from
        archive_tool: Archiver used to unpack the archives
        binary_dir: Directory holding the stage directories
        object_extensions: Object file extension per enabled language

    Returns:
        BundleResult describing the created targets

    Raises:
        TargetExistsError: If target or target.obj already exists
        ArchiveError: If an archive cannot be unpacked
    """
    obj_name = object_target_name(target)
    interface = graph.add_library(target, TargetType.INTERFACE_LIBRARY)
    objects = graph.add_library(obj_name, TargetType.OBJECT_LIBRARY, imported=True, global_=True)
    interface.append_property(
        "INTERFACE_SOURCES", f"$<BUILD_INTERFACE:$<TARGET_OBJECTS:{obj_name}>>"
    )

    result = BundleResult(target, obj_name)

    def unpack(location: str) -> List[str]:
        return archive_tool.unpack_static_lib(
            location, binary_dir, object_extensions=object_extensions, reuse=True
        )

    logger.info(f"=== Bundling {len(libraries)} librar{'y' if len(libraries) == 1 else 'ies'} into {target} ===")

    queue = deque(libraries)
    visited = set()
    while queue:
        lib = queue.popleft()
        if lib in visited:
            continue
        visited.add(lib)

        node = graph.get(lib) if graph.is_target(lib) else None
        if node is None or not node.imported or node.type != TargetType.STATIC_LIBRARY:
            logger.debug(f"Linking {lib} ({describe(node)}) through {target}")
            interface.link_libraries(lib)
            result.linked.append(lib)
            continue

        logger.info(f"Bundling {lib}")

        disagreements = transfer_same(SAME_OBJECT_PROPERTIES, node, objects)
        disagreements += transfer_same(SAME_INTERFACE_PROPERTIES, node, interface)
        if disagreements:
            result.disagreements[lib] = disagreements

        transfer_append(APPEND_PROPERTIES, node, interface)
        transfer_location(node, objects, node.configurations, unpack, append=True)
        merge_configurations(node, objects)

        result.bundled.append(lib)
        queue.extend(node.dependencies)

    total = sum(len(v) for k, v in objects.properties.items() if k.startswith("IMPORTED_OBJECTS"))
    logger.info(
        f"Bundled {len(result.bundled)} static librar{'y' if len(result.bundled) == 1 else 'ies'} "
        f"({total} object entries), passed through {len(result.linked)} link item(s)"
    )
    return result
