"""Write-once store of step results, keyed by step id.

The scheduler's coordinating coroutine is the only writer. Dependents only
read keys that are already published, so no lock is needed.
"""

from collections.abc import Iterator, Mapping

from flowengine.flow.result import StepResult


class StepOutputStore(Mapping[str, StepResult]):
    """Single-writer, write-once mapping of step id -> StepResult."""

    def __init__(self) -> None:
        self._results: dict[str, StepResult] = {}

    def publish(self, result: StepResult) -> None:
        """Record a step's terminal result. A second write for the same id is a bug."""
        if result.step_id in self._results:
            raise KeyError(f"Result for step '{result.step_id}' already recorded")
        self._results[result.step_id] = result

    def succeeded(self, step_id: str) -> bool:
        result = self._results.get(step_id)
        return result is not None and result.success

    def __getitem__(self, step_id: str) -> StepResult:
        return self._results[step_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)
