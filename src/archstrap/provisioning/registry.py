"""Step registry and dependency ordering."""

import heapq
from collections import defaultdict
from dataclasses import replace
from typing import Iterable, Iterator

from archstrap.core.exceptions import (
    CyclicDependencyError,
    DuplicateNameError,
    UnknownDependencyError,
    UnknownStepError,
)
from archstrap.provisioning.schema import Step


class StepRegistry:
    """Ordered collection of provisioning steps forming a DAG."""

    def __init__(self, steps: Iterable[Step] | None = None):
        """Initialize the registry.

        Args:
            steps: optional steps to register as one batch (see ``register_all``)
        """
        self._steps: dict[str, Step] = {}
        if steps is not None:
            self.register_all(steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __contains__(self, name: object) -> bool:
        return name in self._steps

    def __iter__(self) -> Iterator[Step]:
        """Iterate in registration order."""
        return iter(self._steps.values())

    @property
    def names(self) -> list[str]:
        return list(self._steps)

    def get(self, name: str) -> Step:
        try:
            return self._steps[name]
        except KeyError:
            raise UnknownStepError([name])

    def register(self, step: Step) -> None:
        """Add one step.

        Dependencies may name steps registered later; ``validate()`` checks them.

        Raises:
            DuplicateNameError: a step with the same name exists
        """
        if step.name in self._steps:
            raise DuplicateNameError(step.name)
        self._steps[step.name] = step

    def register_all(self, steps: Iterable[Step]) -> None:
        """Add a batch of steps atomically.

        The batch is validated together with the steps already present; on any
        error the registry is left exactly as it was.

        Raises:
            DuplicateNameError, UnknownDependencyError, CyclicDependencyError
        """
        snapshot = dict(self._steps)
        try:
            for step in steps:
                self.register(step)
            self.validate()
        except Exception:
            self._steps = snapshot
            raise

    def validate(self) -> None:
        """Check that every dependency exists and the graph has no cycle.

        Raises:
            UnknownDependencyError: a ``depends_on`` name is not registered
            CyclicDependencyError: if a cycle is detected
        """
        for step in self._steps.values():
            for dep in sorted(step.depends_on):
                if dep not in self._steps:
                    raise UnknownDependencyError(step.name, dep)

        visited: set[str] = set()
        rec_stack: set[str] = set()
        path: list[str] = []

        def visit(node: str) -> None:
            visited.add(node)
            rec_stack.add(node)
            path.append(node)

            for dep in self._ordered(self._steps[node].depends_on):
                if dep not in visited:
                    visit(dep)
                elif dep in rec_stack:
                    cycle_start = path.index(dep)
                    raise CyclicDependencyError(path[cycle_start:] + [dep])

            path.pop()
            rec_stack.remove(node)

        for name in self._steps:
            if name not in visited:
                visit(name)

    def _ordered(self, names: Iterable[str]) -> list[str]:
        """Sort names by registration index."""
        position = {name: i for i, name in enumerate(self._steps)}
        return sorted(names, key=lambda n: position.get(n, len(position)))

    def topological_order(self) -> list[Step]:
        """Return steps so that every step follows its dependencies.

        Kahn's algorithm; among steps that are ready at the same time the one
        registered first goes first, so the result is stable across runs.
        """
        self.validate()

        index = {name: i for i, name in enumerate(self._steps)}
        indegree = {name: len(step.depends_on) for name, step in self._steps.items()}
        dependents: dict[str, list[str]] = defaultdict(list)
        for name, step in self._steps.items():
            for dep in step.depends_on:
                dependents[dep].append(name)

        ready = [index[name] for name, degree in indegree.items() if degree == 0]
        heapq.heapify(ready)
        names = list(self._steps)
        order: list[Step] = []

        while ready:
            name = names[heapq.heappop(ready)]
            order.append(self._steps[name])
            for child in dependents[name]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, index[child])

        return order

    def dependents_of(self, name: str) -> set[str]:
        """All steps that depend on ``name`` directly or transitively."""
        self.get(name)
        found: set[str] = set()
        frontier = [name]
        while frontier:
            current = frontier.pop()
            for step in self._steps.values():
                if current in step.depends_on and step.name not in found:
                    found.add(step.name)
                    frontier.append(step.name)
        return found

    def select(self, names: Iterable[str]) -> "StepRegistry":
        """Return a registry restricted to ``names``.

        Dependencies on steps outside the selection are dropped, so the selected
        steps run as if those dependencies had already been satisfied.

        Raises:
            UnknownStepError: a requested name is not registered
        """
        wanted = list(dict.fromkeys(names))
        unknown = [n for n in wanted if n not in self._steps]
        if unknown:
            raise UnknownStepError(unknown)

        keep = set(wanted)
        selected = StepRegistry()
        for step in self._steps.values():
            if step.name in keep:
                selected.register(_with_depends_on(step, step.depends_on & keep))
        selected.validate()
        return selected


def _with_depends_on(step: Step, depends_on: frozenset[str]) -> Step:
    if depends_on == step.depends_on:
        return step
    return replace(step, depends_on=depends_on)
