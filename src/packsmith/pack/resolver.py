"""
Dependency resolution over pack components.

Expands a selection of component ids into an ordered, cycle-free install
plan: every dependency precedes its dependents, components pulled in only
through a dependency edge are flagged as auto-resolved, and ties follow the
order in which ids were first selected.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from packsmith.errors import DependencyCycleError, UnknownComponentError
from packsmith.pack.manifest import Component, Manifest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedComponent:
    """A component in a plan, and whether it was pulled in as a dependency."""

    component: Component
    auto_resolved: bool = False

    @property
    def id(self) -> str:
        return self.component.id


@dataclass(frozen=True)
class ResolvedPlan:
    """
    Ordered install plan. Produced per resolution call, never persisted.

    Attributes:
        components: Components in dependency order
    """

    components: tuple[ResolvedComponent, ...] = ()

    @property
    def ids(self) -> list[str]:
        return [c.id for c in self.components]

    @property
    def explicit(self) -> list[ResolvedComponent]:
        return [c for c in self.components if not c.auto_resolved]

    @property
    def auto(self) -> list[ResolvedComponent]:
        return [c for c in self.components if c.auto_resolved]

    def __len__(self) -> int:
        return len(self.components)

    def __iter__(self):
        return iter(self.components)


class DependencyResolver:
    """
    Topologically sort a component selection.

    Example:
        plan = DependencyResolver().resolve(["pack.b"], manifest.components)
        plan.ids          # ["pack.a", "pack.b"]
        plan.auto[0].id   # "pack.a"
    """

    def resolve(self, selected_ids: Sequence[str], all_components: Iterable[Component]) -> ResolvedPlan:
        """
        Resolve a selection into a plan.

        Args:
            selected_ids: Explicitly selected component ids (first-seen order wins)
            all_components: Universe of known components (may span packs)

        Returns:
            ResolvedPlan with dependencies before dependents

        Raises:
            UnknownComponentError: If a selected id or dependency doesn't exist
            DependencyCycleError: If a cycle is reachable from the selection
        """
        universe = {c.id: c for c in all_components}
        selection: list[str] = []
        for component_id in selected_ids:
            if component_id not in selection:
                selection.append(component_id)

        explicit = set(selection)
        done: set[str] = set()
        in_stack: list[str] = []
        order: list[str] = []

        def visit(component_id: str, required_by: str | None) -> None:
            if component_id in done:
                return
            if component_id in in_stack:
                start = in_stack.index(component_id)
                raise DependencyCycleError(members=[*in_stack[start:], component_id])
            component = universe.get(component_id)
            if component is None:
                raise UnknownComponentError(component_id=component_id, required_by=required_by)

            in_stack.append(component_id)
            for dependency in component.dependencies:
                visit(dependency, component_id)
            in_stack.pop()

            done.add(component_id)
            order.append(component_id)

        for component_id in selection:
            visit(component_id, None)

        plan = ResolvedPlan(tuple(
            ResolvedComponent(universe[cid], auto_resolved=cid not in explicit)
            for cid in order
        ))
        if plan.auto:
            logger.debug("Auto-resolved dependencies: %s", [c.id for c in plan.auto])
        return plan


def select_components(manifest: Manifest, excluded: Iterable[str] = ()) -> list[str]:
    """
    Component ids to install for a pack, honouring exclusions.

    Required components can't be excluded; they are always selected.
    """
    excluded_ids = set(excluded)
    return [
        c.id for c in manifest.components
        if c.is_required or c.id not in excluded_ids
    ]
