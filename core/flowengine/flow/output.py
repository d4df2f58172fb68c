"""Final output aggregation for a finished flow run."""

import json
from collections.abc import Mapping

from flowengine.flow.definition import OutputFormat, OutputSpec
from flowengine.flow.result import StepResult


def aggregate_output(output: OutputSpec, results: Mapping[str, StepResult]) -> str:
    """
    Render the flow output from the steps named in `output.from`.

    A single step yields its content verbatim. Several steps are combined by
    `output.format`: markdown sections, newline-joined text, or a JSON object.
    Steps without content contribute nothing (or an empty section).
    """
    step_ids = output.step_ids
    if not step_ids:
        return ""

    def content(step_id: str) -> str:
        result = results.get(step_id)
        return result.content if result else ""

    if len(step_ids) == 1:
        return content(step_ids[0])

    if output.format == OutputFormat.CONCAT:
        return "\n".join(c for c in (content(sid) for sid in step_ids) if c)
    if output.format == OutputFormat.JSON:
        return json.dumps({sid: content(sid) for sid in step_ids if content(sid)})
    return "\n\n".join(f"## {sid}\n\n{content(sid)}" for sid in step_ids)
