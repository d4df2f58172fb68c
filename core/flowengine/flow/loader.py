"""Loading flow definitions from JSON and YAML files."""

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from flowengine.flow.definition import FlowDefinition
from flowengine.flow.errors import FlowLoadError

logger = logging.getLogger(__name__)

FLOW_FILE_SUFFIXES = (".flow.json", ".flow.yaml", ".flow.yml")


def is_flow_file(path: Path) -> bool:
    return path.is_file() and path.name.endswith(FLOW_FILE_SUFFIXES)


class FlowLoader:
    """
    Reads flow definitions from disk.

    Files ending in .yaml/.yml are parsed with PyYAML (safe_load); everything
    else is parsed as JSON. Loading only checks the document shape; DAG checks
    happen in GraphValidator.

    Example:
        loader = FlowLoader()
        definition = loader.load("flows/security-audit.flow.json")
        for path, flow in loader.discover("flows/"):
            print(path, flow.id)
    """

    def load(self, path: str | Path) -> FlowDefinition:
        """
        Load one flow definition.

        Raises:
            FlowLoadError: the file is missing, unparsable, or not a flow
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise FlowLoadError(f"Cannot read flow file {path}: {e}", str(path)) from e

        data = self._parse(text, path)
        definition = self.from_dict(data, source=str(path))
        logger.debug(f"Loaded flow '{definition.id}' ({len(definition.steps)} steps) from {path}")
        return definition

    def from_dict(self, data: Any, source: str | None = None) -> FlowDefinition:
        """Build a FlowDefinition from already-parsed data."""
        if not isinstance(data, dict):
            raise FlowLoadError(
                f"Flow definition must be an object, got {type(data).__name__}", source
            )
        try:
            return FlowDefinition.model_validate(data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            )
            raise FlowLoadError(f"Invalid flow definition: {problems}", source) from e

    def discover(self, directory: str | Path) -> list[tuple[Path, FlowDefinition]]:
        """
        Load every flow file in a directory (non-recursive), sorted by name.

        Files that fail to load are logged and left out.
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise FlowLoadError(f"Flows directory not found: {directory}", str(directory))

        flows: list[tuple[Path, FlowDefinition]] = []
        for path in sorted(p for p in directory.iterdir() if is_flow_file(p)):
            try:
                flows.append((path, self.load(path)))
            except FlowLoadError as e:
                logger.warning(f"Skipping {path.name}: {e}")
        return flows

    def _parse(self, text: str, path: Path) -> Any:
        if path.suffix in (".yaml", ".yml"):
            try:
                return yaml.safe_load(text)
            except yaml.YAMLError as e:
                raise FlowLoadError(f"Invalid YAML in {path}: {e}", str(path)) from e
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise FlowLoadError(f"Invalid JSON in {path}: {e}", str(path)) from e
