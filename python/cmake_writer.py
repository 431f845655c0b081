import logging
from pathlib import Path
from typing import List, Optional

from target_graph import LibraryTarget, TargetGraph, TargetType

logger = logging.getLogger(__name__)

HEADER = """\
# Generated by hl-packaging. Do not edit.
#
# {description}
"""


def quote(value: str) -> str:
    """Quote a CMake argument, escaping backslashes, quotes and variable references."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("${", "\\${")
    return f'"{escaped}"'


def render_target(target: LibraryTarget) -> str:
    """
    Render the CMake commands that recreate one target.

    Imported targets are declared IMPORTED (and GLOBAL when IMPORTED_GLOBAL is
    true); properties follow in one set_target_properties() call.
    """
    words = [target.name, TargetType.keyword(target.type)]
    if target.imported:
        words.append("IMPORTED")
        if target.is_global:
            words.append("GLOBAL")
    lines = [f"add_library({' '.join(words)})"]

    props = [
        (k, v) for k, v in target.properties.items()
        if k != "IMPORTED_GLOBAL"
    ]
    if props:
        lines.append(f"set_target_properties({target.name} PROPERTIES")
        for key, value in props:
            lines.append(f"  {key} {quote(';'.join(value))}")
        lines.append(")")
    return "\n".join(lines) + "\n"


def render_targets(graph: TargetGraph, names: List[str], description: Optional[str] = None) -> str:
    """
    Render the given targets, in order, as a CMake script.

    Raises:
        KeyError: If a name is not a target in the graph
    """
    if description is None:
        description = f"Targets: {', '.join(names)}"
    parts = [HEADER.format(description=description)]
    for name in names:
        parts.append(render_target(graph.get(name)))
    return "\n".join(parts)


def write_targets(path, graph: TargetGraph, names: List[str], description: Optional[str] = None) -> Path:
    """Write render_targets() output to path, creating parent directories. Returns the path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_targets(graph, names, description), encoding="utf-8")
    logger.info(f"Wrote {len(names)} target(s) to {path}")
    return path
