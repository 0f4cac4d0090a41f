"""Project: a named collection of compile units and their dependencies.

Dependencies are unit names resolved through the project, never object
references, so diamonds are allowed and a unit can be declared before the
units it depends on. The whole graph is validated (unknown names, cycles)
before the first tool runs.
"""

import logging
from pathlib import Path
from typing import Iterable, Optional

from cbuild import output
from cbuild.errors import ConfigurationError, CyclicDependencyError
from cbuild.output import Verbosity

from .build_context import BuildDefaults
from .compile_unit import CompileUnit

logger = logging.getLogger(__name__)


class Project:
    """Insertion-ordered set of compile units keyed by name.

    Usage:
        project = Project("demo")
        project.add(api)        # api has no dependencies
        project.add(app)        # app.dependencies == ["api"]
        project.build(defaults) # compiles api, then app
    """

    def __init__(self, name: str):
        self.name = name
        self._units: dict[str, CompileUnit] = {}

    def add(self, unit: CompileUnit) -> None:
        """Add a unit to the project.

        Args:
            unit: The unit to add

        Raises:
            ConfigurationError: If a unit with the same name already exists
        """
        if unit.name in self._units:
            raise ConfigurationError(f"Duplicate unit name: {unit.name}")
        self._units[unit.name] = unit

    def remove(self, unit: CompileUnit) -> None:
        """Remove a unit; does nothing if this exact unit is not in the project."""
        if self._units.get(unit.name) is unit:
            del self._units[unit.name]

    def get(self, name: str) -> CompileUnit:
        """Get a unit by name.

        Raises:
            ConfigurationError: If no unit has that name
        """
        try:
            return self._units[name]
        except KeyError:
            raise ConfigurationError(f"Unknown unit: {name}") from None

    @property
    def units(self) -> list[CompileUnit]:
        """All units in declaration order."""
        return list(self._units.values())

    def __len__(self) -> int:
        return len(self._units)

    def __contains__(self, name: object) -> bool:
        return name in self._units

    def build_order(self, names: Optional[Iterable[str]] = None) -> list[CompileUnit]:
        """Compute a dependency-respecting build order.

        Depth-first post-order over declared dependencies (siblings in
        declaration order), using white/gray/black colouring to detect
        back edges. Every unit appears once.

        Args:
            names: Units to order (with their transitive dependencies);
                defaults to every unit in the project

        Returns:
            Units, each after all of its dependencies

        Raises:
            ConfigurationError: If a name or dependency is unknown
            CyclicDependencyError: If the dependencies form a cycle
        """
        WHITE, GRAY, BLACK = 0, 1, 2
        color: dict[str, int] = {name: WHITE for name in self._units}
        order: list[CompileUnit] = []

        def visit(name: str, path: list[str]) -> None:
            color[name] = GRAY
            path.append(name)
            unit = self._units[name]
            for dep_name in unit.dependencies:
                if dep_name not in self._units:
                    raise ConfigurationError(f"Unit '{name}' depends on unknown unit '{dep_name}'")
                if color[dep_name] == GRAY:
                    cycle_start = path.index(dep_name)
                    cycle = path[cycle_start:] + [dep_name]
                    raise CyclicDependencyError(f"Cyclic dependency detected: {' -> '.join(cycle)}")
                if color[dep_name] == WHITE:
                    visit(dep_name, path)
            path.pop()
            color[name] = BLACK
            order.append(unit)

        roots = list(self._units) if names is None else list(names)
        for name in roots:
            self.get(name)
            if color[name] == WHITE:
                visit(name, [])
        return order

    def build(self, defaults: BuildDefaults, force: bool = False, progress: bool = False) -> None:
        """Build every unit not yet built, dependencies first.

        Args:
            defaults: Project-wide defaults
            force: Ignore persisted caches and recompile everything
            progress: Show progress bars over compilations

        Raises:
            ConfigurationError: On invalid units or dependency graph
            CyclicDependencyError: If the dependencies form a cycle
            ToolInvocationError: If any tool fails
        """
        self._validate(self.build_order(), defaults)

        output.log(f"==> Building project: {self.name}", level=Verbosity.MINIMAL, style="bold")
        for unit in self.units:
            if unit.built:
                continue
            output.log(f">>> Found unbuilt unit: {unit.name}", level=Verbosity.AVERAGE)
            for dep_name in unit.dependencies:
                self._build_dependency(dep_name, defaults, force, progress)
            self._compile(unit, defaults, force, progress)

    def build_dependency(
        self, name: str, defaults: BuildDefaults, force: bool = False, progress: bool = False
    ) -> None:
        """Build one unit after its transitive dependencies, skipping built units.

        Raises:
            ConfigurationError: If the unit or one of its dependencies is unknown
            CyclicDependencyError: If the dependencies form a cycle
            ToolInvocationError: If any tool fails
        """
        self._validate(self.build_order([name]), defaults)
        self._build_dependency(name, defaults, force, progress)

    def build_targets(
        self, names: Iterable[str], defaults: BuildDefaults, force: bool = False, progress: bool = False
    ) -> None:
        """Build only the named units and what they depend on.

        Raises:
            ConfigurationError: If a name or dependency is unknown
            CyclicDependencyError: If the dependencies form a cycle
            ToolInvocationError: If any tool fails
        """
        names = list(names)
        order = self.build_order(names)
        self._validate(order, defaults)
        output.log(f"==> Building targets: {', '.join(names)}", level=Verbosity.MINIMAL, style="bold")
        for unit in order:
            if not unit.built:
                self._compile(unit, defaults, force, progress)

    def _validate(self, order: list[CompileUnit], defaults: BuildDefaults) -> None:
        # A misconfigured unit must fail before any tool runs
        for unit in order:
            if not unit.built:
                unit.prepare(defaults)

    def _build_dependency(self, name: str, defaults: BuildDefaults, force: bool, progress: bool) -> None:
        unit = self._units[name]
        if unit.built:
            return
        output.log(f"==> Building dependency: {name}", level=Verbosity.MINIMAL, style="yellow")
        for dep_name in unit.dependencies:
            self._build_dependency(dep_name, defaults, force, progress)
        self._compile(unit, defaults, force, progress)

    def _compile(self, unit: CompileUnit, defaults: BuildDefaults, force: bool, progress: bool) -> None:
        relinked = [name for name in unit.dependencies if self._units[name].linked]
        if relinked:
            logger.debug(f"Unit '{unit.name}' relinks: dependencies rebuilt this run: {relinked}")
        unit.compile(defaults, force=force, force_relink=bool(relinked), progress=progress)

    def reset(self) -> None:
        """Mark every unit as not built, so the next build re-checks them."""
        for unit in self._units.values():
            unit.built = False
            unit.linked = False

    def clear_caches(self, defaults: BuildDefaults) -> None:
        """Clear every unit's in-memory cache and delete its cache file."""
        for unit in self._units.values():
            unit.clear_cache(defaults)
        output.log(f"==> Cleared build caches of {len(self._units)} units", level=Verbosity.LITTLE)

    def clean(self, defaults: BuildDefaults) -> list[Path]:
        """Delete caches, object files, and targets of every unit.

        Returns:
            Paths that were removed
        """
        removed: list[Path] = []
        for unit in self._units.values():
            removed.extend(unit.clean(defaults))
        output.log(f"==> Cleaned project: {self.name} ({len(removed)} files removed)", level=Verbosity.MINIMAL)
        return removed
