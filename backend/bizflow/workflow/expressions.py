"""
Variable interpolation, duration parsing and a restricted expression evaluator.

Expressions are parsed with the ``ast`` module and walked node by node; only literals,
name/attribute/subscript lookups, comparisons, boolean and arithmetic operators,
conditional expressions, collection displays and a small set of builtins are allowed.
JavaScript-style operators (===, !==, &&, ||, !) and literals (true, false, null,
undefined) are accepted so that definitions written for the JS engine keep working.
"""
import ast
import json
import operator
import re
from typing import Any, Dict, Mapping, Optional, Tuple

from bizflow.core.logging_config import LoggingConfig
from bizflow.workflow.errors import ExpressionError

logger = LoggingConfig.get_logger(__name__)

_MISSING = object()

PLACEHOLDER_RE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")
DURATION_RE = re.compile(r"^(\d+)(ms|s|m|h|d)$")
STRING_LITERAL_RE = re.compile(r"""('(?:\\.|[^'\\])*'|"(?:\\.|[^"\\])*")""")

DURATION_UNITS = {
    "ms": 1,
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
}

MAX_EXPRESSION_LENGTH = 2000
MAX_POWER_EXPONENT = 100
MAX_SEQUENCE_LENGTH = 10_000


# ============================================
# Lookup and interpolation
# ============================================

def _lookup(obj: Any, path: str) -> Any:
    current = obj
    for key in path.split("."):
        if current is None:
            return _MISSING
        if isinstance(current, Mapping):
            current = current.get(key, _MISSING)
        elif isinstance(current, (list, tuple)):
            if not key.lstrip("-").isdigit():
                return _MISSING
            index = int(key)
            if not -len(current) <= index < len(current):
                return _MISSING
            current = current[index]
        elif key.startswith("_"):
            return _MISSING
        else:
            current = getattr(current, key, _MISSING)
        if current is _MISSING:
            return _MISSING
    return current


def get_nested_value(obj: Any, path: str) -> Any:
    """Get a value by dotted path ("client.email", "items.0.id"); None when missing"""
    value = _lookup(obj, path.strip())
    return None if value is _MISSING else value


def _resolve(path: str, variables: Mapping[str, Any], step_results: Optional[Mapping[str, Any]]) -> Tuple[bool, Any]:
    if path.startswith("steps.") and step_results is not None:
        value = _lookup(step_results, path[len("steps."):])
    else:
        value = _lookup(variables, path)
    if value is _MISSING or value is None:
        return False, None
    return True, value


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def _repeated_length(left: Any, right: Any) -> int:
    """Length of `left * right` when it repeats a str, list or tuple, else 0"""
    for sequence, count in ((left, right), (right, left)):
        if isinstance(sequence, (str, list, tuple)) and isinstance(count, int):
            return len(sequence) * max(count, 0)
    return 0


def replace_variables(value: Any, variables: Mapping[str, Any], step_results: Optional[Mapping[str, Any]] = None) -> Any:
    """
    Replace {{ path }} placeholders in strings, recursing into dicts and lists.

    A string that is exactly one placeholder resolves to the raw value (list, dict, number).
    Placeholders that do not resolve are left as-is.
    """
    if isinstance(value, str):
        whole = PLACEHOLDER_RE.fullmatch(value.strip())
        if whole:
            found, resolved = _resolve(whole.group(1), variables, step_results)
            return resolved if found else value

        def substitute(match):
            found, resolved = _resolve(match.group(1), variables, step_results)
            return _stringify(resolved) if found else match.group(0)

        return PLACEHOLDER_RE.sub(substitute, value)

    if isinstance(value, list):
        return [replace_variables(item, variables, step_results) for item in value]

    if isinstance(value, dict):
        return {key: replace_variables(val, variables, step_results) for key, val in value.items()}

    return value


def parse_duration(duration: Any) -> int:
    """Parse "500ms", "30s", "15m", "2h", "3d" (or an int of milliseconds) to milliseconds"""
    if isinstance(duration, int) and not isinstance(duration, bool):
        if duration < 0:
            raise ExpressionError(f"Invalid duration format: {duration}")
        return duration
    if isinstance(duration, str):
        match = DURATION_RE.match(duration.strip())
        if match:
            value, unit = match.groups()
            return int(value) * DURATION_UNITS[unit]
    raise ExpressionError(f"Invalid duration format: {duration}")


# ============================================
# Safe expression evaluation
# ============================================

def normalize_expression(expression: str) -> str:
    """Translate JS operators and literals to Python, leaving string literals untouched"""
    parts = STRING_LITERAL_RE.split(expression)
    for i in range(0, len(parts), 2):
        code = parts[i]
        code = code.replace("!==", "!=").replace("===", "==")
        code = code.replace("&&", " and ").replace("||", " or ")
        code = re.sub(r"!(?!=)", " not ", code)
        code = re.sub(r"\btrue\b", "True", code)
        code = re.sub(r"\bfalse\b", "False", code)
        code = re.sub(r"\b(?:null|undefined)\b", "None", code)
        parts[i] = code
    return "".join(parts)


_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
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
    "min": min,
    "max": max,
    "abs": abs,
    "round": round,
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
    "sum": sum,
    "sorted": sorted,
    "any": any,
    "all": all,
}

# Methods callable on values (JS names and their Python spellings)
SAFE_METHODS = {
    "includes": lambda obj, item: item in obj,
    "startsWith": lambda obj, prefix: obj.startswith(prefix),
    "endsWith": lambda obj, suffix: obj.endswith(suffix),
    "startswith": lambda obj, prefix: obj.startswith(prefix),
    "endswith": lambda obj, suffix: obj.endswith(suffix),
    "toLowerCase": lambda obj: obj.lower(),
    "toUpperCase": lambda obj: obj.upper(),
    "lower": lambda obj: obj.lower(),
    "upper": lambda obj: obj.upper(),
    "trim": lambda obj: obj.strip(),
    "strip": lambda obj: obj.strip(),
    "get": lambda obj, key, default=None: obj.get(key, default),
    "keys": lambda obj: list(obj.keys()),
    "values": lambda obj: list(obj.values()),
}


class _Evaluator:
    """Walks a parsed expression against a scope of plain data"""

    def __init__(self, scope: Dict[str, Any]):
        self.scope = scope

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise ExpressionError(f"Unsupported expression element: {type(node).__name__}")
        return method(node)

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in self.scope:
            return self.scope[node.id]
        raise ExpressionError(f"Unknown name: {node.id}")

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        value = self.visit(node.value)
        return self._member(value, node.attr)

    def _member(self, value: Any, name: str) -> Any:
        if name.startswith("_"):
            raise ExpressionError(f"Access to '{name}' is not allowed")
        if value is None:
            raise ExpressionError(f"Cannot read property '{name}' of null")
        if isinstance(value, Mapping):
            if name in value:
                return value[name]
            if name == "length":
                return len(value)
            return None
        if name == "length" and isinstance(value, (list, tuple, str)):
            return len(value)
        return None

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        value = self.visit(node.value)
        if isinstance(node.slice, ast.Slice):
            raise ExpressionError("Slicing is not supported")
        key = self.visit(node.slice)
        if value is None:
            raise ExpressionError(f"Cannot read property '{key}' of null")
        if isinstance(value, Mapping):
            return value.get(key)
        if isinstance(value, (list, tuple, str)):
            if isinstance(key, bool) or not isinstance(key, int):
                raise ExpressionError(f"Invalid index: {key!r}")
            if -len(value) <= key < len(value):
                return value[key]
            return None
        raise ExpressionError(f"Value of type {type(value).__name__} is not subscriptable")

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        if isinstance(node.op, ast.And):
            result = True
            for value_node in node.values:
                result = self.visit(value_node)
                if not result:
                    return result
            return result
        result = False
        for value_node in node.values:
            result = self.visit(value_node)
            if result:
                return result
        return result

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        op = _UNARY_OPS.get(type(node.op))
        if op is None:
            raise ExpressionError(f"Unsupported operator: {type(node.op).__name__}")
        return op(self.visit(node.operand))

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        op = _BIN_OPS.get(type(node.op))
        if op is None:
            raise ExpressionError(f"Unsupported operator: {type(node.op).__name__}")
        left = self.visit(node.left)
        right = self.visit(node.right)
        if isinstance(node.op, ast.Pow) and isinstance(right, (int, float)) and abs(right) > MAX_POWER_EXPONENT:
            raise ExpressionError("Exponent too large")
        if isinstance(node.op, ast.Mult) and _repeated_length(left, right) > MAX_SEQUENCE_LENGTH:
            raise ExpressionError("Repeated sequence too large")
        if isinstance(node.op, ast.Add) and isinstance(left, str) != isinstance(right, str):
            # JS-style string concatenation
            return _stringify(left) + _stringify(right)
        return op(left, right)

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op_node, comparator in zip(node.ops, node.comparators):
            op = _COMPARE_OPS.get(type(op_node))
            if op is None:
                raise ExpressionError(f"Unsupported comparison: {type(op_node).__name__}")
            right = self.visit(comparator)
            if not op(left, right):
                return False
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_List(self, node: ast.List) -> list:
        return [self.visit(element) for element in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> tuple:
        return tuple(self.visit(element) for element in node.elts)

    def visit_Dict(self, node: ast.Dict) -> dict:
        if any(key is None for key in node.keys):
            raise ExpressionError("Dict unpacking is not supported")
        return {self.visit(key): self.visit(value) for key, value in zip(node.keys, node.values)}

    def visit_Call(self, node: ast.Call) -> Any:
        if node.keywords:
            raise ExpressionError("Keyword arguments are not supported")
        args = [self.visit(arg) for arg in node.args]

        if isinstance(node.func, ast.Name):
            func = SAFE_FUNCTIONS.get(node.func.id)
            if func is None:
                raise ExpressionError(f"Function '{node.func.id}' is not allowed")
            return func(*args)

        if isinstance(node.func, ast.Attribute):
            method = SAFE_METHODS.get(node.func.attr)
            if method is None:
                raise ExpressionError(f"Method '{node.func.attr}' is not allowed")
            target = self.visit(node.func.value)
            if target is None:
                raise ExpressionError(f"Cannot call '{node.func.attr}' on null")
            return method(target, *args)

        raise ExpressionError("Only whitelisted functions can be called")


def build_scope(context: Any) -> Dict[str, Any]:
    """
    Build the evaluation scope from a WorkflowContext or a plain mapping
    ({"variables", "stepResults", "instanceId", "workflowId"}).
    """
    if hasattr(context, "as_dict"):
        context = context.as_dict()
    context = dict(context or {})
    variables = context.get("variables") or {}
    step_results = context.get("stepResults") or {}
    scope = dict(variables)
    scope.update({
        "context": context,
        "variables": variables,
        "steps": step_results,
    })
    return scope


def evaluate_expression(expression: str, context: Any) -> Any:
    """
    Evaluate an expression against a workflow context.

    Raises:
        ExpressionError: on syntax errors, disallowed constructs or runtime errors
    """
    if not isinstance(expression, str) or not expression.strip():
        raise ExpressionError("Expression must be a non-empty string")
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise ExpressionError("Expression is too long")

    source = normalize_expression(expression).strip()
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid expression '{expression}': {e.msg}") from e

    try:
        return _Evaluator(build_scope(context)).visit(tree)
    except ExpressionError:
        raise
    except (TypeError, ValueError, ZeroDivisionError, OverflowError,
            AttributeError, KeyError, IndexError, RecursionError) as e:
        raise ExpressionError(f"Expression '{expression}' failed: {e}") from e


def evaluate_condition(expression: str, context: Any) -> bool:
    """Evaluate a condition; evaluation errors count as False"""
    try:
        return bool(evaluate_expression(expression, context))
    except ExpressionError as e:
        logger.warning(
            f"Condition evaluation failed: {e}",
            extra={"expression": expression},
        )
        return False
