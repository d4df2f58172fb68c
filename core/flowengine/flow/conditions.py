"""
Step conditions - decide at dispatch time whether a step runs at all.

A condition is a Python expression evaluated against three names:

- results: published step results by id, each a mapping with success,
  skipped, status, content, data (content parsed as JSON, or None),
  duration_ms and error
- request: user_prompt, trace_id, request_id
- flow: id, name, version

Mapping keys can be read as attributes, so `results.lint.success` and
`results["lint"]["success"]` are equivalent. Evaluation walks a whitelisted
AST; names, attributes and calls outside that whitelist are rejected.

    evaluator = ConditionEvaluator()
    outcome = evaluator.evaluate("results.scan.data['issues'] > 0", names)
"""

import ast
import json
import logging
import operator
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from flowengine.flow.definition import ExecutionContext, FlowDefinition, StepDefinition
from flowengine.flow.errors import ConditionError
from flowengine.flow.result import StepResult, StepStatus

logger = logging.getLogger(__name__)

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

SAFE_FUNCTIONS = {
    "len": len,
    "any": any,
    "all": all,
    "bool": bool,
    "int": int,
    "float": float,
    "str": str,
    "min": min,
    "max": max,
    "sum": sum,
    "abs": abs,
}

SAFE_METHODS = frozenset(
    {
        "get",
        "keys",
        "values",
        "items",
        "startswith",
        "endswith",
        "lower",
        "upper",
        "strip",
        "split",
        "count",
    }
)

_CONSTANTS = {"true": True, "false": False, "null": None, "none": None}


class _Evaluator:
    """Recursive evaluator over a whitelisted subset of Python expressions."""

    def __init__(self, names: Mapping[str, Any]):
        self.scopes: list[Mapping[str, Any]] = [names]

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise ConditionError(f"Unsupported expression: {type(node).__name__}")
        return method(node)

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        for scope in reversed(self.scopes):
            if node.id in scope:
                return scope[node.id]
        if node.id in _CONSTANTS:
            return _CONSTANTS[node.id]
        if node.id in SAFE_FUNCTIONS:
            return SAFE_FUNCTIONS[node.id]
        raise ConditionError(f"Unknown name '{node.id}'")

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        if node.attr.startswith("_"):
            raise ConditionError(f"Access to '{node.attr}' is not allowed")
        target = self.visit(node.value)
        if isinstance(target, Mapping):
            return target.get(node.attr)
        raise ConditionError(f"Cannot read '{node.attr}' of {type(target).__name__}")

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        target = self.visit(node.value)
        key = self.visit(node.slice)
        if isinstance(target, Mapping):
            return target.get(key)
        try:
            return target[key]
        except (IndexError, KeyError, TypeError) as e:
            raise ConditionError(f"Cannot index {type(target).__name__} with {key!r}") from e

    def visit_Slice(self, node: ast.Slice) -> slice:
        return slice(
            self.visit(node.lower) if node.lower else None,
            self.visit(node.upper) if node.upper else None,
            self.visit(node.step) if node.step else None,
        )

    def visit_List(self, node: ast.List) -> list:
        return [self.visit(e) for e in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> tuple:
        return tuple(self.visit(e) for e in node.elts)

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        value: Any = None
        for operand in node.values:
            value = self.visit(operand)
            if isinstance(node.op, ast.And) and not value:
                return value
            if isinstance(node.op, ast.Or) and value:
                return value
        return value

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        op = _UNARY_OPS.get(type(node.op))
        if op is None:
            raise ConditionError(f"Unsupported operator: {type(node.op).__name__}")
        return op(self.visit(node.operand))

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        op = _BINARY_OPS.get(type(node.op))
        if op is None:
            raise ConditionError(f"Unsupported operator: {type(node.op).__name__}")
        return op(self.visit(node.left), self.visit(node.right))

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op_node, right_node in zip(node.ops, node.comparators):
            right = self.visit(right_node)
            if not _COMPARE_OPS[type(op_node)](left, right):
                return False
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_Call(self, node: ast.Call) -> Any:
        if node.keywords:
            raise ConditionError("Keyword arguments are not supported")
        args = [self.visit(a) for a in node.args]

        if isinstance(node.func, ast.Name):
            func = SAFE_FUNCTIONS.get(node.func.id)
            if func is None:
                raise ConditionError(f"Function '{node.func.id}' is not allowed")
            return func(*args)

        if isinstance(node.func, ast.Attribute):
            name = node.func.attr
            if name not in SAFE_METHODS:
                raise ConditionError(f"Method '{name}' is not allowed")
            receiver = self.visit(node.func.value)
            if not isinstance(receiver, (str, Mapping, list, tuple)) or not hasattr(receiver, name):
                raise ConditionError(f"{type(receiver).__name__} has no method '{name}'")
            return getattr(receiver, name)(*args)

        raise ConditionError("Only named functions and methods can be called")

    def visit_GeneratorExp(self, node: ast.GeneratorExp) -> list:
        # Materialized eagerly so scopes never outlive the comprehension
        return [self.visit(node.elt) for _ in self._comprehension(node.generators)]

    def visit_ListComp(self, node: ast.ListComp) -> list:
        return [self.visit(node.elt) for _ in self._comprehension(node.generators)]

    def _comprehension(self, generators: list[ast.comprehension]) -> Iterator[None]:
        first, rest = generators[0], generators[1:]
        for item in self.visit(first.iter):
            scope: dict[str, Any] = {}
            self._bind(first.target, item, scope)
            self.scopes.append(scope)
            try:
                if all(self.visit(cond) for cond in first.ifs):
                    if rest:
                        yield from self._comprehension(rest)
                    else:
                        yield None
            finally:
                self.scopes.pop()

    def _bind(self, target: ast.AST, value: Any, scope: dict[str, Any]) -> None:
        if isinstance(target, ast.Name):
            scope[target.id] = value
        elif isinstance(target, ast.Tuple):
            values = list(value)
            if len(values) != len(target.elts):
                raise ConditionError("Cannot unpack value in comprehension")
            for elt, item in zip(target.elts, values):
                self._bind(elt, item, scope)
        else:
            raise ConditionError("Unsupported comprehension target")


def safe_eval(expression: str, names: Mapping[str, Any]) -> Any:
    """
    Evaluate an expression against `names` using only whitelisted syntax.

    Raises:
        ConditionError: the expression does not parse, uses disallowed syntax,
            or fails while evaluating
    """
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise ConditionError(f"Invalid condition syntax: {e.msg}") from e
    try:
        return _Evaluator(names).visit(tree)
    except ConditionError:
        raise
    except Exception as e:
        raise ConditionError(f"{type(e).__name__}: {e}") from e


@dataclass(frozen=True)
class ConditionResult:
    """Outcome of evaluating one step condition."""

    should_execute: bool
    condition: str
    error: str | None = None

    @property
    def skip_reason(self) -> str:
        return self.error or f"Condition '{self.condition}' evaluated to false"


def _parse_json(content: str) -> Any:
    if not content:
        return None
    try:
        return json.loads(content)
    except ValueError:
        return None


class ConditionEvaluator:
    """Evaluates step conditions against the results published so far."""

    def evaluate(self, condition: str | None, names: Mapping[str, Any]) -> ConditionResult:
        """
        Evaluate a condition. Empty conditions always pass.

        Evaluation errors never propagate: the step does not execute and the
        error is returned as the reason.
        """
        if not condition or not condition.strip():
            return ConditionResult(should_execute=True, condition=condition or "")
        try:
            return ConditionResult(should_execute=bool(safe_eval(condition, names)), condition=condition)
        except ConditionError as e:
            logger.warning(f"      ⚠ Condition evaluation failed: {condition}")
            logger.warning(f"         Error: {e}")
            return ConditionResult(should_execute=False, condition=condition, error=str(e))

    def evaluate_step(
        self,
        step: StepDefinition,
        results: Mapping[str, StepResult],
        context: ExecutionContext,
        definition: FlowDefinition,
    ) -> ConditionResult:
        """Evaluate `step.condition` for the current state of a flow run."""
        if not step.condition:
            return ConditionResult(should_execute=True, condition="")
        return self.evaluate(step.condition, self.build_names(results, context, definition))

    def build_names(
        self,
        results: Mapping[str, StepResult],
        context: ExecutionContext,
        definition: FlowDefinition,
    ) -> dict[str, Any]:
        return {
            "results": {
                step_id: {
                    "success": r.success,
                    "skipped": r.status == StepStatus.SKIPPED,
                    "status": r.status.value,
                    "content": r.content,
                    "data": _parse_json(r.content),
                    "duration_ms": r.duration_ms,
                    "error": r.error,
                }
                for step_id, r in results.items()
            },
            "request": {
                "user_prompt": context.user_prompt,
                "trace_id": context.trace_id,
                "request_id": context.request_id,
            },
            "flow": {
                "id": definition.id,
                "name": definition.name,
                "version": definition.version,
            },
        }
