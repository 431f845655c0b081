import importlib.util
import itertools
import logging
from pathlib import Path
from typing import Dict, List, Optional

import env_manager
from cmake_runner import CMakeRunner

logger = logging.getLogger(__name__)

STEPS = ("configure", "build", "install", "test")
MODES = ("phased", "per_cell")


class BuildCell:
    """
    One point of a build matrix: a build directory and its cache entries.

    Args:
        name: Cell name, the axis values joined with '-' (e.g. "static-bundled")
        values: Axis name -> value for this cell
        build_dir: Absolute build directory
        cache: -D cache entries passed at configure time
    """

    def __init__(self, name: str, values: Dict[str, str], build_dir: Path, cache: Dict[str, object]):
        self.name = name
        self.values = values
        self.build_dir = build_dir
        self.cache = cache

    def __repr__(self) -> str:
        return f"BuildCell({self.name!r}, build_dir={str(self.build_dir)!r})"


class MatrixBuilder:
    """Discovers build matrix recipes from configs/ and runs them.

    Each recipe is a configs/<name>/build_config.py exposing BUILD_CONFIG:

        BUILD_CONFIG = {
            "generator": "Ninja",                       # optional
            "cache": {"CMAKE_BUILD_TYPE": "Release"},   # common -D entries
            "env_cache": {"LLVM_DIR": "LLVM_DIR"},      # -D entries read from the environment
            "axes": [                                   # ordered; cells are the product
                ("halide", {"static": {...}, "shared": {...}}),
                ("llvm", {"static": {}, "bundled": {...}}),
            ],
            "exclude": [{"halide": "shared", "llvm": "bundled"}],
            "build_dir": "build/release-{halide}-{llvm}",  # relative to the source dir
            "mode": "per_cell",                         # or "phased"
            "phases": [{"step": "configure"}, {"step": "build"}, ...],
        }

    In "per_cell" mode every phase runs for one cell before the next cell
    starts; in "phased" mode each phase runs over all cells before the next
    phase. Phases may restrict and reorder cells with "cells" and repeat a
    step per configuration with "configs".
    """

    def __init__(self, source_dir: Optional[Path] = None, project_root: Optional[Path] = None):
        """
        Args:
            source_dir: Root of the CMake project being built. Defaults to the current directory.
            project_root: Root of this repository. Defaults to parent of python/.
        """
        if project_root is None:
            project_root = Path(__file__).parent.parent
        self.project_root = Path(project_root)
        self.configs_dir = self.project_root / "configs"
        self.source_dir = Path(source_dir).resolve() if source_dir else Path.cwd()

        # Discover available recipes
        self._recipes = {}
        if self.configs_dir.is_dir():
            for entry in sorted(self.configs_dir.iterdir()):
                config_path = entry / "build_config.py"
                if entry.is_dir() and config_path.is_file():
                    self._recipes[entry.name] = config_path

    def list_recipes(self) -> List[str]:
        """Return names of discovered recipes."""
        return list(self._recipes.keys())

    def load_recipe(self, name: str) -> dict:
        """
        Load a recipe's BUILD_CONFIG.

        Raises:
            ValueError: If the named recipe is not found or is malformed
        """
        if name not in self._recipes:
            available = ", ".join(self._recipes.keys()) or "(none)"
            raise ValueError(
                f"Recipe '{name}' not found. Available recipes: {available}"
            )

        config_path = self._recipes[name]
        spec = importlib.util.spec_from_file_location(f"build_config_{name}", config_path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)

        build_config = getattr(module, "BUILD_CONFIG", None)
        if not isinstance(build_config, dict):
            raise ValueError(f"{config_path} must define a BUILD_CONFIG dict")
        validate_recipe(name, build_config)
        return build_config

    def expand(self, name: str) -> List[BuildCell]:
        """Expand a recipe into its ordered list of build cells."""
        return expand_cells(self.load_recipe(name), self.source_dir)

    def run(
        self,
        name: str,
        runner: Optional[CMakeRunner] = None,
        only: Optional[List[str]] = None,
    ) -> List[BuildCell]:
        """
        Run a recipe.

        Args:
            name: Recipe name
            runner: CMakeRunner to use (a default one is created otherwise)
            only: Restrict the run to these cell names

        Returns:
            The cells that were run

        Raises:
            ValueError: If the recipe or a cell name in only is unknown
            EnvironmentError: If an "env_cache" variable is unset (not checked on dry runs)
            CommandError: If any cmake/ctest step fails; later steps do not run
        """
        if runner is None:
            runner = CMakeRunner()

        build_config = self.load_recipe(name)
        cells = expand_cells(build_config, self.source_dir, require_env=not runner.dry_run)

        if only:
            known = {cell.name for cell in cells}
            unknown = [c for c in only if c not in known]
            if unknown:
                raise ValueError(
                    f"Unknown cell(s) {', '.join(unknown)} for recipe '{name}'. "
                    f"Available: {', '.join(sorted(known))}"
                )
            cells = [cell for cell in cells if cell.name in only]

        logger.info(f"=== Recipe {name}: {len(cells)} cell(s) in {self.source_dir} ===")
        for cell in cells:
            logger.debug(f"  {cell.name}: {cell.build_dir}")

        phases = build_config["phases"]
        if build_config.get("mode", "phased") == "per_cell":
            for idx, cell in enumerate(cells):
                logger.info("=" * 60)
                logger.info(f"=== Cell {idx + 1}/{len(cells)}: {cell.name} ===")
                logger.info("=" * 60)
                for phase in phases:
                    self._run_phase(runner, build_config, phase, [cell])
        else:
            for phase in phases:
                logger.info(f"=== Phase: {phase['step']} ===")
                self._run_phase(runner, build_config, phase, order_cells(cells, phase.get("cells")))

        logger.info(f"=== Recipe {name} complete ===")
        return cells

    def _run_phase(self, runner: CMakeRunner, build_config: dict, phase: dict, cells: List[BuildCell]) -> None:
        step = phase["step"]
        configs = phase.get("configs") or [None]

        for cell in cells:
            if step == "configure":
                runner.configure(
                    self.source_dir,
                    cell.build_dir,
                    generator=build_config.get("generator"),
                    cache=cell.cache,
                    extra_args=build_config.get("extra_args"),
                )
            elif step == "build":
                for cfg in configs:
                    runner.build(cell.build_dir, config=cfg, parallel=phase.get("parallel"))
            elif step == "install":
                prefix = self.source_dir / phase.get("prefix", "build/install")
                for cfg in configs:
                    runner.install(cell.build_dir, prefix, config=cfg)
            elif step == "test":
                for cfg in configs:
                    runner.test(
                        cell.build_dir,
                        regex=phase.get("regex"),
                        verbose=phase.get("verbose", True),
                        config=cfg,
                    )


def validate_recipe(name: str, build_config: dict) -> None:
    """
    Raises:
        ValueError: If the recipe is missing required keys or uses unknown steps/modes
    """
    for key in ("axes", "build_dir", "phases"):
        if key not in build_config:
            raise ValueError(f"Recipe '{name}' is missing '{key}'")
    mode = build_config.get("mode", "phased")
    if mode not in MODES:
        raise ValueError(f"Recipe '{name}': unknown mode '{mode}'. Supported: {', '.join(MODES)}")
    for phase in build_config["phases"]:
        if phase.get("step") not in STEPS:
            raise ValueError(
                f"Recipe '{name}': unknown step '{phase.get('step')}'. Supported: {', '.join(STEPS)}"
            )


def expand_cells(build_config: dict, source_dir: Path, require_env: bool = False) -> List[BuildCell]:
    """
    Expand a recipe's axes into build cells, in axis order, minus exclusions.

    The cache of a cell is: common "cache", then "env_cache" entries read from
    the environment, then each axis value's entries. An unset "env_cache"
    variable is passed as an empty value, or raises EnvironmentError when
    require_env is set.
    """
    axes = build_config["axes"]
    axis_names = [axis_name for axis_name, _ in axes]
    excludes = build_config.get("exclude", [])

    common = dict(build_config.get("cache", {}))
    for cache_name, env_name in build_config.get("env_cache", {}).items():
        if require_env:
            common[cache_name] = env_manager.ensure(env_name)
        else:
            common[cache_name] = env_manager.get(env_name, "")

    cells = []
    for combo in itertools.product(*[list(values.keys()) for _, values in axes]):
        values = dict(zip(axis_names, combo))
        if any(all(values.get(k) == v for k, v in ex.items()) for ex in excludes):
            logger.debug(f"Excluding {values}")
            continue

        cache = dict(common)
        for (axis_name, axis_values), value in zip(axes, combo):
            cache.update(axis_values[value])

        build_dir = Path(source_dir) / build_config["build_dir"].format(**values)
        cells.append(BuildCell("-".join(combo), values, build_dir, cache))
    return cells


def order_cells(cells: List[BuildCell], order: Optional[List[str]]) -> List[BuildCell]:
    """Return cells restricted to and ordered by order (cells missing from the list are dropped)."""
    if not order:
        return cells
    by_name = {cell.name: cell for cell in cells}
    return [by_name[name] for name in order if name in by_name]
