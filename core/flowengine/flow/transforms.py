"""
Built-in input transforms.

Each transform is a pure function of (inputs, args, request):

- inputs:  the collected source outputs, labeled by step id (or "request")
- args:    the step's transform_args, if any
- request: the flow run's original user prompt

Transforms raise ValueError on unusable input; the aggregator reports that
as a TransformError for the step.
"""

import json
import re
from collections.abc import Callable, Sequence
from typing import Any, NamedTuple

from flowengine.flow.definition import TransformKind


class SourceOutput(NamedTuple):
    """One labeled input to a transform."""

    label: str
    content: str


Transform = Callable[[Sequence[SourceOutput], Any, str], str]

_FENCE_PATTERN = re.compile(r"```[^\n`]*\n(.*?)```", re.DOTALL)
_TEMPLATE_VAR_PATTERN = re.compile(r"\{\{(\w+)\}\}")


def _joined(inputs: Sequence[SourceOutput]) -> str:
    return "\n\n".join(item.content for item in inputs)


def passthrough(inputs: Sequence[SourceOutput], args: Any = None, request: str = "") -> str:
    """Contents verbatim, in order, separated by a blank line."""
    return _joined(inputs)


def extract_code(inputs: Sequence[SourceOutput], args: Any = None, request: str = "") -> str:
    """Fenced code blocks only. Content without any fence is returned unchanged."""
    text = _joined(inputs)
    blocks = [block.rstrip("\n") for block in _FENCE_PATTERN.findall(text)]
    if not blocks:
        return text
    return "\n\n".join(blocks)


def merge_as_context(inputs: Sequence[SourceOutput], args: Any = None, request: str = "") -> str:
    """Each input as a markdown section headed by its label, in order."""
    return "\n\n".join(f"## {item.label}\n\n{item.content}" for item in inputs)


def extract_section(inputs: Sequence[SourceOutput], args: Any = None, request: str = "") -> str:
    """Body of the markdown `## <args>` section, up to the next `## ` heading."""
    if not isinstance(args, str) or not args:
        raise ValueError("extract_section requires a section name as transform_args")

    in_section = False
    found = False
    lines: list[str] = []
    for line in _joined(inputs).split("\n"):
        if line.startswith("## "):
            if in_section:
                break
            if args in line:
                in_section = found = True
                continue
        if in_section:
            lines.append(line)

    if not found:
        raise ValueError(f"Section '{args}' not found")
    return "\n".join(lines).strip("\n")


def append_to_request(inputs: Sequence[SourceOutput], args: Any = None, request: str = "") -> str:
    """The original request followed by the step input."""
    output = _joined(inputs)
    request_part = f"Original: {request}" if request else "Original:"
    output_part = f"Step Output: {output}" if output else "Step Output:"
    return f"{request_part}\n\n{output_part}"


def json_extract(inputs: Sequence[SourceOutput], args: Any = None, request: str = "") -> str:
    """Field at dot path `args` (e.g. "items.0.name") of the JSON input."""
    if not isinstance(args, str) or not args:
        raise ValueError("json_extract requires a field path as transform_args")
    try:
        current: Any = json.loads(_joined(inputs))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON input: {e}") from e

    for segment in args.split("."):
        if isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        elif isinstance(current, dict) and segment in current:
            current = current[segment]
        else:
            raise ValueError(f"Field '{args}' not found")

    return current if isinstance(current, str) else json.dumps(current)


def template_fill(inputs: Sequence[SourceOutput], args: Any = None, request: str = "") -> str:
    """Replace {{name}} placeholders in the input with values from `args`."""
    if not isinstance(args, dict):
        raise ValueError("template_fill requires a mapping as transform_args")

    template = _joined(inputs)
    missing = [name for name in _TEMPLATE_VAR_PATTERN.findall(template) if name not in args]
    if missing:
        raise ValueError(f"Missing context variable: {missing[0]}")
    return _TEMPLATE_VAR_PATTERN.sub(lambda m: str(args[m.group(1)]), template)


TRANSFORMS: dict[TransformKind, Transform] = {
    TransformKind.PASSTHROUGH: passthrough,
    TransformKind.EXTRACT_CODE: extract_code,
    TransformKind.MERGE_AS_CONTEXT: merge_as_context,
    TransformKind.EXTRACT_SECTION: extract_section,
    TransformKind.APPEND_TO_REQUEST: append_to_request,
    TransformKind.JSON_EXTRACT: json_extract,
    TransformKind.TEMPLATE_FILL: template_fill,
}

_unmapped = set(TransformKind) - TRANSFORMS.keys()
if _unmapped:
    raise RuntimeError(f"Transforms without an implementation: {sorted(_unmapped)}")


def apply_transform(
    kind: TransformKind,
    inputs: Sequence[SourceOutput],
    args: Any = None,
    request: str = "",
) -> str:
    """Run the transform registered for `kind`."""
    return TRANSFORMS[kind](inputs, args, request)
