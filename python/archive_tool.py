import logging
import os
import re
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Optional

import env_manager

logger = logging.getLogger(__name__)

# Object file extension per enabled language (CMAKE_<LANG>_OUTPUT_EXTENSION)
if sys.platform == "win32":
    DEFAULT_OBJECT_EXTENSIONS = {"C": ".obj", "CXX": ".obj"}
else:
    DEFAULT_OBJECT_EXTENSIONS = {"C": ".o", "CXX": ".o"}

_SUPPORTED_ARCHIVER = re.compile(r"ar|AR")


class ArchiveError(RuntimeError):
    """Raised when the archiver fails to extract a library."""


class UnsupportedArchiverError(ValueError):
    """Raised when the configured archiver is not an ar-compatible tool."""


def stage_name(library: str) -> str:
    """
    Name of the directory a static library is extracted into.

    The library's file name without any extension, plus '.obj':
    /opt/llvm/lib/libLLVMSupport.a -> libLLVMSupport.obj
    """
    return os.path.basename(library).split(".", 1)[0] + ".obj"


class ArchiveTool:
    """
    Wrapper around an ar-compatible archiver.

    The archiver is resolved in order from:
    1) The ar argument
    2) The AR environment variable
    3) ar or llvm-ar on PATH

    Args:
        ar: Path or name of the archiver executable

    Raises:
        FileNotFoundError: If no archiver can be found
    """

    def __init__(self, ar: Optional[str] = None):
        self.ar_path = self._resolve_ar(ar)
        logger.debug(f"Using archiver: {self.ar_path}")

    @staticmethod
    def _resolve_ar(ar: Optional[str]) -> str:
        candidate = ar or env_manager.get("AR")
        if candidate:
            return candidate
        for name in ("ar", "llvm-ar"):
            path = shutil.which(name)
            if path:
                return path
        raise FileNotFoundError(
            "Archiver not found. Please install binutils (ar) or llvm-ar, or set AR."
        )

    def validate(self) -> None:
        """
        Check that the archiver understands `ar -x`.

        Raises:
            UnsupportedArchiverError: If the tool name does not look like ar
        """
        if not _SUPPORTED_ARCHIVER.search(os.path.basename(self.ar_path)):
            raise UnsupportedArchiverError(
                f"Archive tool {self.ar_path} not supported for static library conversion!"
            )

    def extract(self, library: str, stage: Path) -> None:
        """
        Run `ar -x <library>` inside the stage directory.

        Raises:
            ArchiveError: If the archiver exits with a non-zero status
            RuntimeError: If the archiver executable is missing
        """
        cmd = [self.ar_path, "-x", library]
        logger.debug(f"  Working directory: {stage}")
        logger.debug(f"  Command: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                cwd=str(stage),
                capture_output=True,
                text=True
            )
        except FileNotFoundError:
            raise RuntimeError(f"{self.ar_path} not found. Please install it or set AR.")

        if result.stdout and logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"[ar] stdout:\n{result.stdout}")
        if result.stderr and logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"[ar] stderr:\n{result.stderr}")

        if result.returncode != 0:
            logger.error(f"[ar] Extraction of {library} failed: {result.stderr}")
            raise ArchiveError(
                f"Failed to extract {library} (exit code {result.returncode}):\n"
                f"{result.stderr}"
            )

    def unpack_static_lib(
        self,
        library: str,
        binary_dir: Path,
        object_extensions: Optional[Dict[str, str]] = None,
        reuse: bool = True,
    ) -> List[str]:
        """
        Unpack a static library and return the object files it contained.

        Args:
            library: Path to the .a file
            binary_dir: Directory in which the stage directory is created
            object_extensions: Object file extension per enabled language
            reuse: Skip extraction when the stage directory already exists

        Returns:
            Sorted absolute paths of the extracted object files

        Raises:
            FileNotFoundError: If the library does not exist and must be extracted
            ArchiveError: If extraction fails
        """
        if object_extensions is None:
            object_extensions = DEFAULT_OBJECT_EXTENSIONS

        stage = Path(binary_dir).resolve() / stage_name(library)

        if reuse and stage.exists():
            logger.debug(f"Reusing stage directory {stage}")
        else:
            library = os.path.abspath(library)
            if not os.path.isfile(library):
                raise FileNotFoundError(f"Static library not found: {library}")
            stage.mkdir(parents=True, exist_ok=True)
            logger.info(f"[ar] Unpacking {os.path.basename(library)} into {stage}")
            self.extract(library, stage)

        suffixes = tuple(sorted(set(object_extensions.values())))
        objects = sorted(
            str(p) for p in stage.rglob("*")
            if p.is_file() and p.name.endswith(suffixes)
        )
        logger.debug(f"Found {len(objects)} object file(s) in {stage.name}")
        return objects


def parse_object_extensions(items: List[str]) -> Dict[str, str]:
    """
    Parse LANG=EXT pairs (e.g. ["CXX=.o", "ASM=.o"]) into an extension map.

    Raises:
        ValueError: If an item is not of the form LANG=EXT
    """
    extensions = {}
    for item in items:
        lang, sep, ext = item.partition("=")
        if not sep or not lang or not ext:
            raise ValueError(f"Invalid object extension '{item}'. Expected LANG=EXT, e.g. CXX=.o")
        extensions[lang] = ext
    return extensions
