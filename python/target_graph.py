import importlib.util
import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

logger = logging.getLogger(__name__)


class TargetType:
    """CMake target types (values of the TYPE property)."""
    STATIC_LIBRARY = "STATIC_LIBRARY"
    SHARED_LIBRARY = "SHARED_LIBRARY"
    MODULE_LIBRARY = "MODULE_LIBRARY"
    OBJECT_LIBRARY = "OBJECT_LIBRARY"
    INTERFACE_LIBRARY = "INTERFACE_LIBRARY"
    UNKNOWN_LIBRARY = "UNKNOWN_LIBRARY"
    EXECUTABLE = "EXECUTABLE"

    # Keyword used by add_library() for each library type
    KEYWORDS = {
        "STATIC": STATIC_LIBRARY,
        "SHARED": SHARED_LIBRARY,
        "MODULE": MODULE_LIBRARY,
        "OBJECT": OBJECT_LIBRARY,
        "INTERFACE": INTERFACE_LIBRARY,
        "UNKNOWN": UNKNOWN_LIBRARY,
    }

    @classmethod
    def from_keyword(cls, keyword: str) -> str:
        if keyword not in cls.KEYWORDS:
            raise ValueError(
                f"Unknown library type: {keyword}. Supported: {', '.join(cls.KEYWORDS)}"
            )
        return cls.KEYWORDS[keyword]

    @classmethod
    def keyword(cls, target_type: str) -> str:
        for kw, tt in cls.KEYWORDS.items():
            if tt == target_type:
                return kw
        raise ValueError(f"Target type {target_type} has no add_library() keyword")


class TargetExistsError(ValueError):
    """Raised when a target name is added to a graph twice."""


PropertyValue = Union[str, List[str]]


def as_list(value: PropertyValue) -> List[str]:
    """
    Normalize a property value to a CMake list.

    Strings are split on ';' the way CMake splits lists; empty elements are dropped.
    """
    if isinstance(value, str):
        items = value.split(";")
    else:
        items = []
        for v in value:
            items.extend(str(v).split(";"))
    return [item for item in items if item != ""]


def config_suffix(config: str) -> str:
    """Return the per-configuration property suffix, e.g. 'Release' -> '_RELEASE'."""
    if not config:
        return ""
    return "_" + config.upper()


class LibraryTarget:
    """
    A node in the library dependency graph.

    Properties are stored as CMake lists. A property that is present with an
    empty list is "set" and differs from one that is absent, matching
    get_property(... SET) in CMake.
    """

    def __init__(self, name: str, target_type: str, imported: bool = False):
        self.name = name
        self.type = target_type
        self.imported = imported
        self.properties: Dict[str, List[str]] = {}

    def __repr__(self) -> str:
        imported = " IMPORTED" if self.imported else ""
        return f"LibraryTarget({self.name!r}, {self.type}{imported})"

    def is_set(self, prop: str) -> bool:
        return prop in self.properties

    def get_property(self, prop: str) -> Optional[List[str]]:
        """Return a copy of the property value, or None when unset."""
        value = self.properties.get(prop)
        if value is None:
            return None
        return list(value)

    def set_property(self, prop: str, value: PropertyValue) -> None:
        self.properties[prop] = as_list(value)

    def append_property(self, prop: str, value: PropertyValue) -> None:
        self.properties.setdefault(prop, []).extend(as_list(value))

    def link_libraries(self, *libs: str) -> None:
        """Equivalent of target_link_libraries(<name> INTERFACE <libs>)."""
        self.append_property("INTERFACE_LINK_LIBRARIES", list(libs))

    @property
    def dependencies(self) -> List[str]:
        return self.get_property("INTERFACE_LINK_LIBRARIES") or []

    @property
    def configurations(self) -> List[str]:
        return self.get_property("IMPORTED_CONFIGURATIONS") or []

    @property
    def is_global(self) -> bool:
        value = self.get_property("IMPORTED_GLOBAL")
        return bool(value) and value[0].upper() in ("1", "ON", "YES", "TRUE", "Y")

    def location(self, config: str = "") -> Optional[str]:
        """Return IMPORTED_LOCATION[_<CONFIG>] as a single path, or None when unset."""
        value = self.get_property("IMPORTED_LOCATION" + config_suffix(config))
        if value is None:
            return None
        return ";".join(value)


class TargetGraph:
    """
    Registry of library targets, keyed by name.

    Names that are not registered are treated as plain linker items (system
    libraries, flags, generator expressions) by the conversion walks.
    """

    def __init__(self):
        self._targets: Dict[str, LibraryTarget] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._targets

    def __iter__(self) -> Iterator[LibraryTarget]:
        return iter(self._targets.values())

    def __len__(self) -> int:
        return len(self._targets)

    def is_target(self, name: str) -> bool:
        return name in self._targets

    def add_library(
        self,
        name: str,
        target_type: str,
        imported: bool = False,
        global_: bool = False,
    ) -> LibraryTarget:
        """
        Create and register a library target.

        Raises:
            TargetExistsError: If a target with that name already exists
        """
        if name in self._targets:
            raise TargetExistsError(f"Target '{name}' already exists")
        target = LibraryTarget(name, target_type, imported=imported)
        if global_:
            target.set_property("IMPORTED_GLOBAL", "TRUE")
        self._targets[name] = target
        logger.debug(f"Added target {target!r}")
        return target

    def get(self, name: str) -> LibraryTarget:
        """
        Raises:
            KeyError: If no target with that name exists
        """
        if name not in self._targets:
            raise KeyError(f"No target named '{name}'")
        return self._targets[name]

    def get_property(self, name: str, prop: str) -> Optional[List[str]]:
        return self.get(name).get_property(prop)

    def names(self) -> List[str]:
        return list(self._targets.keys())


def graph_from_targets(targets: List[dict]) -> TargetGraph:
    """
    Build a TargetGraph from a list of target dicts.

    Each dict has "name" and "type" (add_library() keyword, e.g. "STATIC"),
    and optionally "imported" (default True), "global" and "properties".
    """
    graph = TargetGraph()
    for entry in targets:
        if "name" not in entry or "type" not in entry:
            raise ValueError(f"Target entry needs \"name\" and \"type\": {entry!r}")
        target = graph.add_library(
            entry["name"],
            TargetType.from_keyword(entry["type"]),
            imported=entry.get("imported", True),
            global_=entry.get("global", False),
        )
        for prop, value in entry.get("properties", {}).items():
            target.set_property(prop, value)
    return graph


def load_graph_module(module_path: Path) -> TargetGraph:
    """
    Load a target graph declared in a Python module's TARGETS list.

    Raises:
        FileNotFoundError: If the module does not exist
        ImportError: If the module cannot be loaded
        ValueError: If the module does not define TARGETS, or an entry lacks name or type
    """
    module_path = Path(module_path)
    if not module_path.is_file():
        raise FileNotFoundError(f"Target graph module not found: {module_path}")

    spec = importlib.util.spec_from_file_location("target_graph_config", module_path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load module from {module_path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    if not hasattr(module, "TARGETS"):
        raise ValueError(
            f"Target graph module must define a TARGETS list\n"
            f"File: {module_path}"
        )
    return graph_from_targets(module.TARGETS)
