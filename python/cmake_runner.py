import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Union

import env_manager

logger = logging.getLogger(__name__)

CacheValue = Union[str, bool, int, Path]


class CommandError(RuntimeError):
    """Raised when a cmake or ctest invocation exits with a non-zero status."""

    def __init__(self, label: str, cmd: List[str], returncode: int, stderr: str = ""):
        self.label = label
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"{label} failed with exit code {returncode}: {' '.join(cmd)}"
            + (f"\n{stderr}" if stderr else "")
        )


def format_cache_value(value: CacheValue) -> str:
    """Render a -D value: booleans become YES/NO, everything else str()."""
    if isinstance(value, bool):
        return "YES" if value else "NO"
    return str(value)


def cache_args(cache: Dict[str, Optional[CacheValue]]) -> List[str]:
    """
    Build -D<name>=<value> arguments.

    Entries whose value is None are skipped; an empty string is passed through.
    """
    return [
        f"-D{name}={format_cache_value(value)}"
        for name, value in cache.items()
        if value is not None
    ]


class CMakeRunner:
    """
    Runs cmake configure/build/install and ctest steps.

    Every step runs to completion before the next one starts; a failing step
    raises CommandError and nothing after it runs.

    Args:
        cmake: cmake executable (default: CMAKE env var, then cmake on PATH)
        ctest: ctest executable (default: CTEST env var, then ctest on PATH)
        env: Extra environment variables for the child processes
        dry_run: Log and record the commands without running them
        capture_output: Capture child output and log it at debug level instead
                        of letting it stream to the terminal
    """

    def __init__(
        self,
        cmake: Optional[str] = None,
        ctest: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        dry_run: bool = False,
        capture_output: bool = False,
    ):
        self.cmake = cmake or env_manager.get("CMAKE") or shutil.which("cmake") or "cmake"
        self.ctest = ctest or env_manager.get("CTEST") or shutil.which("ctest") or "ctest"
        self.env = env
        self.dry_run = dry_run
        self.capture_output = capture_output
        self.history: List[List[str]] = []

    def _run(self, cmd: List[str], label: str, cwd: Optional[Path] = None) -> None:
        self.history.append(cmd)

        if self.dry_run:
            logger.info(f"[{label}] Dry run: {' '.join(cmd)}")
            return

        logger.info(f"[{label}] Running {Path(cmd[0]).name}...")
        if cwd is not None:
            logger.debug(f"  Working directory: {cwd}")
        logger.debug(f"  Command: {' '.join(cmd)}")

        child_env = None
        if self.env:
            child_env = dict(os.environ)
            child_env.update(self.env)

        try:
            result = subprocess.run(
                cmd,
                cwd=str(cwd) if cwd is not None else None,
                env=child_env,
                check=False,
                capture_output=self.capture_output,
                text=True
            )
        except FileNotFoundError:
            raise RuntimeError(f"{cmd[0]} not found. Please install CMake or set CMAKE/CTEST.")

        if self.capture_output and logger.isEnabledFor(logging.DEBUG):
            if result.stdout:
                logger.debug(f"[{label}] stdout:\n{result.stdout}")
            if result.stderr:
                logger.debug(f"[{label}] stderr:\n{result.stderr}")

        if result.returncode != 0:
            stderr = result.stderr if self.capture_output else ""
            logger.error(f"[{label}] Failed with exit code {result.returncode}")
            raise CommandError(label, cmd, result.returncode, stderr or "")

    def configure(
        self,
        source_dir: Path,
        build_dir: Path,
        generator: Optional[str] = None,
        cache: Optional[Dict[str, Optional[CacheValue]]] = None,
        extra_args: Optional[List[str]] = None,
    ) -> None:
        """cmake [-G <generator>] -D... -S <source_dir> -B <build_dir>"""
        cmd = [self.cmake]
        if generator:
            cmd.extend(["-G", generator])
        cmd.extend(cache_args(cache or {}))
        if extra_args:
            cmd.extend(extra_args)
        cmd.extend(["-S", str(source_dir), "-B", str(build_dir)])
        self._run(cmd, "Configure")

    def build(self, build_dir: Path, config: Optional[str] = None, parallel: Optional[int] = None) -> None:
        """cmake --build <build_dir> [--config <config>] [--parallel N]"""
        cmd = [self.cmake, "--build", str(build_dir)]
        if config:
            cmd.extend(["--config", config])
        if parallel:
            cmd.extend(["--parallel", str(parallel)])
        self._run(cmd, f"Build{' ' + config if config else ''}")

    def install(self, build_dir: Path, prefix: Path, config: Optional[str] = None) -> None:
        """cmake --install <build_dir> --prefix <prefix> [--config <config>]"""
        cmd = [self.cmake, "--install", str(build_dir), "--prefix", str(prefix)]
        if config:
            cmd.extend(["--config", config])
        self._run(cmd, f"Install{' ' + config if config else ''}")

    def test(self, build_dir: Path, regex: Optional[str] = None, verbose: bool = True,
             config: Optional[str] = None) -> None:
        """ctest [-C <config>] [-R <regex>] [-V], run inside build_dir"""
        cmd = [self.ctest]
        if config:
            cmd.extend(["-C", config])
        if regex:
            cmd.extend(["-R", regex])
        if verbose:
            cmd.append("-V")
        self._run(cmd, "Test", cwd=Path(build_dir))
