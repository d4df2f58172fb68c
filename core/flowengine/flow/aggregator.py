"""Input aggregation - builds a step's input from the request or earlier outputs."""

import logging
from collections.abc import Mapping

from flowengine.flow.definition import ExecutionContext, InputSource, StepDefinition
from flowengine.flow.errors import AggregationError, TransformError
from flowengine.flow.result import StepResult
from flowengine.flow.transforms import SourceOutput, apply_transform

logger = logging.getLogger(__name__)

REQUEST_LABEL = "request"


class InputAggregator:
    """
    Resolves step inputs.

    - source=request: the run's user prompt, labeled "request"
    - source=aggregate/step: each listed predecessor's content, in `from` order

    The collected inputs are then passed through the step's transform.
    """

    def collect(
        self,
        step: StepDefinition,
        store: Mapping[str, StepResult],
        context: ExecutionContext,
    ) -> list[SourceOutput]:
        """
        Gather the labeled source outputs for a step, before transformation.
        A source skipped by its condition contributes an empty string.

        Raises:
            AggregationError: a source step has no result yet, or did not succeed
        """
        if step.input.source == InputSource.REQUEST:
            return [SourceOutput(REQUEST_LABEL, context.user_prompt)]

        inputs: list[SourceOutput] = []
        for source_id in step.input.sources:
            result = store.get(source_id)
            if result is None:
                raise AggregationError(
                    step.id, f"Step '{step.id}' depends on '{source_id}' which has no result yet"
                )
            if not result.success:
                raise AggregationError(
                    step.id,
                    f"Step '{step.id}' depends on '{source_id}' which did not succeed "
                    f"({result.status})",
                )
            inputs.append(SourceOutput(source_id, result.content))
        return inputs

    def resolve(
        self,
        step: StepDefinition,
        store: Mapping[str, StepResult],
        context: ExecutionContext,
    ) -> str:
        """
        Build the final input string for a step.

        Args:
            step: Step whose input to resolve
            store: Published step results
            context: The run's request context

        Returns:
            The transformed input

        Raises:
            AggregationError: a source is missing or failed
            TransformError: the transform rejected its input
        """
        inputs = self.collect(step, store, context)
        try:
            resolved = apply_transform(
                step.input.transform,
                inputs,
                step.input.transform_args,
                context.user_prompt,
            )
        except ValueError as e:
            raise TransformError(
                step.id, f"Transform '{step.input.transform}' failed for step '{step.id}': {e}"
            ) from e

        logger.debug(
            f"Resolved input for '{step.id}' via {step.input.transform}: "
            f"{sum(len(i.content) for i in inputs)} -> {len(resolved)} chars"
        )
        return resolved
