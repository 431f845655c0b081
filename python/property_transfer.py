"""
Property copying between library targets.

The lists below cover the IMPORTED_ and INTERFACE_ target properties that
apply to both static and object libraries. Properties that only make sense for
one kind are left out:

    IMPORTED_CONFIGURATIONS                    copied by the conversions
    IMPORTED_GLOBAL                            copied by the conversions
    IMPORTED_IMPLIB(_<CONFIG>)                 shared-only
    IMPORTED_LIBNAME(_<CONFIG>)                interface-only
    IMPORTED_LINK_DEPENDENT_LIBRARIES          shared-only
    IMPORTED_LINK_INTERFACE_LANGUAGES          static-only
    IMPORTED_LINK_INTERFACE_LIBRARIES          deprecated
    IMPORTED_LINK_INTERFACE_MULTIPLICITY       static-only
    IMPORTED_LOCATION(_<CONFIG>)               see transfer_location()
    IMPORTED_NO_SONAME / IMPORTED_SONAME       shared-only
    IMPORTED_OBJECTS(_<CONFIG>)                see transfer_location()
    INTERFACE_LINK_LIBRARIES                   walked by the conversions
"""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional

from target_graph import LibraryTarget, config_suffix

logger = logging.getLogger(__name__)

# Single-valued properties that must agree between all bundled libraries
SAME_OBJECT_PROPERTIES = [
    "IMPORTED_COMMON_LANGUAGE_RUNTIME",
]
SAME_INTERFACE_PROPERTIES = [
    "INTERFACE_AUTOUIC_OPTIONS",
    "INTERFACE_POSITION_INDEPENDENT_CODE",
]

# List properties whose values are accumulated
APPEND_PROPERTIES = [
    "INTERFACE_COMPILE_DEFINITIONS",
    "INTERFACE_COMPILE_FEATURES",
    "INTERFACE_COMPILE_OPTIONS",
    "INTERFACE_INCLUDE_DIRECTORIES",
    "INTERFACE_LINK_DEPENDS",
    "INTERFACE_LINK_DIRECTORIES",
    "INTERFACE_LINK_OPTIONS",
    "INTERFACE_PRECOMPILE_HEADERS",
    "INTERFACE_SOURCES",
    "INTERFACE_SYSTEM_INCLUDE_DIRECTORIES",
]

# Everything copied verbatim when converting one library to one object library
TRANSFER_PROPERTIES = sorted(SAME_OBJECT_PROPERTIES + SAME_INTERFACE_PROPERTIES + APPEND_PROPERTIES)

Unpacker = Callable[[str], List[str]]


def transfer_same(properties: List[str], src: LibraryTarget, dst: LibraryTarget) -> List[str]:
    """
    Copy properties that must have one value across every source.

    A property set on src is copied to dst if dst does not have it yet. If dst
    already holds a different value, a warning is logged and dst keeps its value.

    Returns:
        Names of the properties whose values disagree
    """
    disagreements = []
    for prop in properties:
        if not src.is_set(prop):
            continue
        src_val = src.get_property(prop)

        if not dst.is_set(prop):
            dst.set_property(prop, src_val)

        dst_val = dst.get_property(prop)
        if src_val != dst_val:
            logger.warning(
                f"Property {prop} does not agree between {src.name} [{';'.join(src_val)}] "
                f"and {dst.name} [{';'.join(dst_val)}]"
            )
            disagreements.append(prop)
    return disagreements


def transfer_append(properties: List[str], src: LibraryTarget, dst: LibraryTarget) -> None:
    """Append the values of every property set on src to the same property on dst."""
    for prop in properties:
        if src.is_set(prop):
            dst.append_property(prop, src.get_property(prop))


def transfer_copy(properties: List[str], src: LibraryTarget, dst: LibraryTarget) -> None:
    """Overwrite dst's value of every property set on src."""
    for prop in properties:
        if src.is_set(prop):
            dst.set_property(prop, src.get_property(prop))


def transfer_location(
    src: LibraryTarget,
    dst: LibraryTarget,
    configs: List[str],
    unpack: Unpacker,
    append: bool = True,
) -> Dict[str, List[str]]:
    """
    Unpack src's archives and record the objects on dst.

    The base IMPORTED_LOCATION and IMPORTED_LOCATION_<CONFIG> for each config
    are visited. Each archive found is unpacked and its objects stored in the
    matching IMPORTED_OBJECTS[_<CONFIG>] property.

    Args:
        src: Imported static library
        dst: Object library receiving the objects
        configs: Configurations to visit besides the base one
        unpack: Callable turning an archive path into object file paths
        append: Accumulate objects (bundling) and skip empty locations, or
                replace the objects of every set location (conversion)

    Returns:
        Map of property suffix ('' or '_<CONFIG>') to the objects recorded
    """
    recorded = {}
    order = [""] + list(configs) if not append else list(configs) + [""]

    for cfg in order:
        suffix = config_suffix(cfg)
        location_prop = f"IMPORTED_LOCATION{suffix}"
        objects_prop = f"IMPORTED_OBJECTS{suffix}"

        if append:
            location = src.location(cfg)
            if not location:
                continue
        else:
            if not src.is_set(location_prop):
                continue
            location = src.location(cfg)
            if not location:
                # set but empty: nothing to extract, the object list is empty
                dst.set_property(objects_prop, [])
                recorded[suffix] = []
                continue

        objects = unpack(location)
        logger.debug(f"{src.name}{suffix}: {len(objects)} object(s) from {Path(location).name}")

        if append:
            dst.append_property(objects_prop, objects)
        else:
            dst.set_property(objects_prop, objects)
        recorded[suffix] = objects

    return recorded


def merge_configurations(src: LibraryTarget, dst: LibraryTarget) -> None:
    """Add src's IMPORTED_CONFIGURATIONS to dst's, keeping order and skipping duplicates."""
    if not src.is_set("IMPORTED_CONFIGURATIONS"):
        return
    current = dst.get_property("IMPORTED_CONFIGURATIONS") or []
    for cfg in src.configurations:
        if cfg not in current:
            current.append(cfg)
    dst.set_property("IMPORTED_CONFIGURATIONS", current)


def describe(target: Optional[LibraryTarget]) -> str:
    if target is None:
        return "(not a target)"
    imported = "imported " if target.imported else ""
    return f"{imported}{target.type.lower()}"
