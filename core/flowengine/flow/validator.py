"""
Graph validation - turns a FlowDefinition into an ExecutionPlan.

Runs once, synchronously, before any step executes. A definition that is not
a DAG over known step ids is rejected with FlowValidationError.

Steps are stored as integer-indexed nodes in declaration order. A node's
requirements are its dependsOn ids plus any step its input reads from.
"""

import logging
from collections import deque
from dataclasses import dataclass

from flowengine.flow.definition import FlowDefinition, InputSource, StepDefinition
from flowengine.flow.errors import FlowValidationError, ValidationErrorKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanNode:
    """One step in the execution plan."""

    index: int
    step: StepDefinition
    requires: tuple[int, ...]  # Indices that must terminate first
    dependents: tuple[int, ...]  # Indices that require this node

    @property
    def step_id(self) -> str:
        return self.step.id


@dataclass(frozen=True)
class ExecutionPlan:
    """A validated flow, ready to schedule."""

    definition: FlowDefinition
    nodes: tuple[PlanNode, ...]
    index: dict[str, int]
    topological_order: tuple[int, ...]

    def node(self, step_id: str) -> PlanNode:
        return self.nodes[self.index[step_id]]

    def __len__(self) -> int:
        return len(self.nodes)

    def waves(self) -> list[list[str]]:
        """
        Group steps into dependency levels.

        Every step in wave N requires only steps from waves < N. Within a
        wave, steps keep declaration order.
        """
        level: dict[int, int] = {}
        for i in self.topological_order:
            reqs = self.nodes[i].requires
            level[i] = 1 + max((level[r] for r in reqs), default=-1)

        waves: list[list[str]] = [[] for _ in range(max(level.values(), default=-1) + 1)]
        for node in self.nodes:
            waves[level[node.index]].append(node.step_id)
        return waves


class GraphValidator:
    """
    Validates flow definitions and builds execution plans.

    Example:
        plan = GraphValidator().validate(definition)
        for wave in plan.waves():
            print(wave)
    """

    def validate(self, definition: FlowDefinition) -> ExecutionPlan:
        """
        Validate a definition.

        Args:
            definition: The flow to validate

        Returns:
            ExecutionPlan with nodes in declaration order

        Raises:
            FlowValidationError: empty flow, duplicate id, empty aggregate
                source, unknown reference, or dependency cycle
        """
        steps = definition.steps
        if not steps:
            raise FlowValidationError(
                ValidationErrorKind.EMPTY_FLOW,
                f"Flow '{definition.id}' must have at least one step",
            )

        index: dict[str, int] = {}
        for i, step in enumerate(steps):
            if step.id in index:
                raise FlowValidationError(
                    ValidationErrorKind.DUPLICATE_ID,
                    f"Duplicate step id '{step.id}'",
                    [step.id],
                )
            index[step.id] = i

        for step in steps:
            if step.input.source != InputSource.REQUEST and not step.input.sources:
                field_name = "stepId" if step.input.source == InputSource.STEP else "from"
                raise FlowValidationError(
                    ValidationErrorKind.EMPTY_FROM,
                    f"Step '{step.id}' has source '{step.input.source}' "
                    f"but no '{field_name}' steps specified",
                    [step.id],
                )

        for step in steps:
            for dep in step.depends_on:
                self._check_reference(index, dep, f"Step '{step.id}' depends on")
            for source in step.input.sources:
                self._check_reference(index, source, f"Step '{step.id}' reads input from")
        for output_id in definition.output.step_ids:
            self._check_reference(index, output_id, "Flow output reads from")

        requires = [tuple(index[r] for r in step.requires) for step in steps]
        dependents: list[list[int]] = [[] for _ in steps]
        for i, reqs in enumerate(requires):
            for r in reqs:
                dependents[r].append(i)

        order = self._topological_order(steps, requires, dependents)

        nodes = tuple(
            PlanNode(index=i, step=step, requires=requires[i], dependents=tuple(dependents[i]))
            for i, step in enumerate(steps)
        )
        logger.debug(f"Flow '{definition.id}' validated: {len(nodes)} steps")
        return ExecutionPlan(
            definition=definition,
            nodes=nodes,
            index=index,
            topological_order=order,
        )

    @staticmethod
    def _check_reference(index: dict[str, int], step_id: str, what: str) -> None:
        if step_id not in index:
            raise FlowValidationError(
                ValidationErrorKind.UNKNOWN_REFERENCE,
                f"{what} unknown step '{step_id}'",
                [step_id],
            )

    @staticmethod
    def _topological_order(
        steps: tuple[StepDefinition, ...],
        requires: list[tuple[int, ...]],
        dependents: list[list[int]],
    ) -> tuple[int, ...]:
        """Kahn's algorithm. Ties resolve in declaration order."""
        indegree = [len(reqs) for reqs in requires]
        queue = deque(i for i, d in enumerate(indegree) if d == 0)
        order: list[int] = []

        while queue:
            current = queue.popleft()
            order.append(current)
            for dep in dependents[current]:
                indegree[dep] -= 1
                if indegree[dep] == 0:
                    queue.append(dep)

        if len(order) != len(steps):
            remaining = [steps[i].id for i, d in enumerate(indegree) if d > 0]
            raise FlowValidationError(
                ValidationErrorKind.CYCLE,
                f"Cycle detected in dependency graph among steps: {', '.join(remaining)}",
                remaining,
            )
        return tuple(order)


def validate_flow(definition: FlowDefinition) -> ExecutionPlan:
    """Shorthand for GraphValidator().validate(definition)."""
    return GraphValidator().validate(definition)
