"""
Convert IMPORTED STATIC libraries to IMPORTED OBJECT libraries, one by one.

Unlike bundle_static(), which flattens everything into a single object
library, static_to_object() mirrors the dependency tree: every imported static
library <lib> gets a sibling <prefix><lib> object library linked to the
converted versions of its own dependencies.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from archive_tool import ArchiveTool
from property_transfer import TRANSFER_PROPERTIES, transfer_copy, transfer_location
from target_graph import TargetGraph, TargetType

logger = logging.getLogger(__name__)


class StaticToObjectConverter:
    """
    Recursive static-to-object converter.

    Memoisation is by target name: once <prefix><lib> exists in the graph,
    later requests for <lib> return it without unpacking again.

    Args:
        graph: Graph containing the static libraries; new targets are added to it
        prefix: Prefix for the names of the created object libraries
        archive_tool: Archiver used to unpack the archives
        binary_dir: Directory holding the stage directories
        object_extensions: Object file extension per enabled language
    """

    def __init__(
        self,
        graph: TargetGraph,
        prefix: str,
        archive_tool: ArchiveTool,
        binary_dir: Path,
        object_extensions: Optional[Dict[str, str]] = None,
    ):
        if not prefix:
            raise ValueError("A non-empty prefix is required to name the object libraries")
        self.graph = graph
        self.prefix = prefix
        self.archive_tool = archive_tool
        self.binary_dir = Path(binary_dir)
        self.object_extensions = object_extensions
        self.created: List[str] = []
        self._validated = False

    def _unpack(self, location: str) -> List[str]:
        if not self._validated:
            self.archive_tool.validate()
            self._validated = True
        return self.archive_tool.unpack_static_lib(
            location, self.binary_dir, object_extensions=self.object_extensions, reuse=False
        )

    def convert(self, static_target: str) -> str:
        """
        Convert one library and, recursively, its dependencies.

        Returns:
            The name to link against in place of static_target: the new object
            library, or static_target itself when it cannot be converted

        Raises:
            UnsupportedArchiverError: If the archiver is not ar-compatible
            ArchiveError: If an archive cannot be unpacked
        """
        if not self.graph.is_target(static_target):
            # system library, no need to convert
            return static_target

        name = f"{self.prefix}{static_target}"
        if self.graph.is_target(name):
            return name

        source = self.graph.get(static_target)
        if not source.imported or source.type != TargetType.STATIC_LIBRARY:
            logger.debug(f"Not converting {static_target}: only imported static libraries are converted")
            return static_target

        logger.info(f"Converting {static_target} -> {name}")
        target = self.graph.add_library(name, TargetType.OBJECT_LIBRARY, imported=True)
        self.created.append(name)

        transfer_copy(TRANSFER_PROPERTIES, source, target)
        if source.is_global:
            target.set_property("IMPORTED_GLOBAL", source.get_property("IMPORTED_GLOBAL"))
        if source.is_set("IMPORTED_CONFIGURATIONS"):
            target.set_property("IMPORTED_CONFIGURATIONS", source.configurations)

        transfer_location(source, target, source.configurations, self._unpack, append=False)

        for dep in source.dependencies:
            target.link_libraries(self.convert(dep))

        return name


def static_to_object(
    graph: TargetGraph,
    static_target: str,
    prefix: str,
    archive_tool: ArchiveTool,
    binary_dir: Path,
    object_extensions: Optional[Dict[str, str]] = None,
) -> str:
    """Convert a single library tree; see StaticToObjectConverter.convert()."""
    converter = StaticToObjectConverter(graph, prefix, archive_tool, binary_dir, object_extensions)
    return converter.convert(static_target)
