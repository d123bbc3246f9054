"""
Trigger condition evaluation.

Built-in condition kinds are plain predicates over the trigger parameters
and the execution context. The ``custom`` kind evaluates a caller-supplied
boolean expression such as::

    data.tool === 'git_commit' && includes(data.filePath, 'src/')

Expressions are parsed into a Python AST and walked by a small evaluator
that only understands literals, variable and field lookups, comparisons,
boolean connectives, arithmetic and a fixed set of helper functions. No
host code is ever executed.
"""

import ast
import logging
import operator
import re
from functools import lru_cache
from typing import Dict, Any, Callable, Optional

from .errors import ConditionError
from .events import ExecutionContext
from .models import Trigger

logger = logging.getLogger(__name__)


# JavaScript spellings accepted in expressions, rewritten outside string literals
_JS_OPERATORS = [
    ('===', '=='),
    ('!==', '!='),
    ('&&', ' and '),
    ('||', ' or '),
]

_LITERAL_NAMES = {
    'true': True,
    'false': False,
    'null': None,
    'undefined': None,
    'True': True,
    'False': False,
    'None': None,
}



def _ordered(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    """Ordering comparison that is false for missing or incomparable operands."""
    def compare(left, right):
        if left is None or right is None:
            return False
        try:
            return op(left, right)
        except TypeError:
            return False
    return compare


_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: _ordered(operator.lt),
    ast.LtE: _ordered(operator.le),
    ast.Gt: _ordered(operator.gt),
    ast.GtE: _ordered(operator.ge),
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

# String methods callable on values, e.g. data.filePath.endsWith('.py')
_STRING_METHODS = {
    'includes': lambda s, sub: sub in s,
    'startsWith': lambda s, prefix: s.startswith(prefix),
    'endsWith': lambda s, suffix: s.endswith(suffix),
    'toLowerCase': lambda s: s.lower(),
    'toUpperCase': lambda s: s.upper(),
    'trim': lambda s: s.strip(),
}


def _includes(value, search) -> bool:
    return bool(value) and search in value


def _matches(value, pattern) -> bool:
    return bool(value) and re.search(pattern, value) is not None


def _length(collection) -> int:
    return len(collection) if collection else 0


HELPERS: Dict[str, Callable] = {
    'includes': _includes,
    'matches': _matches,
    'length': _length,
}


def translate_expression(code: str) -> str:
    """
    Rewrite JavaScript operators into their Python equivalents.

    String literals are copied through untouched.
    """
    out = []
    i = 0
    n = len(code)
    while i < n:
        ch = code[i]
        if ch in ('"', "'"):
            j = i + 1
            while j < n and code[j] != ch:
                j += 2 if code[j] == '\\' else 1
            out.append(code[i:j + 1])
            i = j + 1
            continue
        for js, py in _JS_OPERATORS:
            if code.startswith(js, i):
                out.append(py)
                i += len(js)
                break
        else:
            if ch == '!' and not code.startswith('!=', i):
                # ~ binds as tightly as JavaScript's !, Python's not does not
                out.append('~')
            else:
                out.append(ch)
            i += 1
    return ''.join(out).strip()


@lru_cache(maxsize=256)
def compile_expression(code: str) -> ast.Expression:
    """Parse an expression into an AST, raising ConditionError on bad syntax."""
    try:
        return ast.parse(translate_expression(code), mode='eval')
    except SyntaxError as e:
        raise ConditionError(f"Invalid condition expression: {e.msg}")


class ExpressionEvaluator(ast.NodeVisitor):
    """Walks a parsed expression against a fixed set of variables."""

    def __init__(self, variables: Dict[str, Any]):
        self.variables = variables

    def evaluate(self, tree: ast.Expression) -> Any:
        return self.visit(tree)

    def generic_visit(self, node):
        raise ConditionError(f"Unsupported expression element: {type(node).__name__}")

    def visit_Expression(self, node):
        return self.visit(node.body)

    def visit_Constant(self, node):
        return node.value

    def visit_Name(self, node):
        if node.id in self.variables:
            return self.variables[node.id]
        if node.id in _LITERAL_NAMES:
            return _LITERAL_NAMES[node.id]
        raise ConditionError(f"{node.id} is not defined")

    def visit_List(self, node):
        return [self.visit(elt) for elt in node.elts]

    visit_Tuple = visit_List

    def visit_Attribute(self, node):
        value = self.visit(node.value)
        if isinstance(value, dict):
            return value.get(node.attr)
        if node.attr == 'length' and isinstance(value, (str, list, tuple)):
            return len(value)
        if value is None:
            raise ConditionError(f"Cannot read property '{node.attr}' of undefined")
        return None

    def visit_Subscript(self, node):
        value = self.visit(node.value)
        key = self.visit(node.slice)
        if isinstance(value, dict):
            return value.get(key)
        if isinstance(value, (list, tuple, str)) and isinstance(key, int):
            try:
                return value[key]
            except IndexError:
                return None
        if value is None:
            raise ConditionError(f"Cannot read property '{key}' of undefined")
        return None

    def visit_BoolOp(self, node):
        if isinstance(node.op, ast.And):
            result = True
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = self.visit(value)
            if result:
                return result
        return result

    def visit_UnaryOp(self, node):
        operand = self.visit(node.operand)
        if isinstance(node.op, (ast.Not, ast.Invert)):
            return not operand
        if isinstance(node.op, ast.USub):
            return -operand
        if isinstance(node.op, ast.UAdd):
            return +operand
        raise ConditionError(f"Unsupported operator: {type(node.op).__name__}")

    def visit_BinOp(self, node):
        op = _BINARY_OPS.get(type(node.op))
        if op is None:
            raise ConditionError(f"Unsupported operator: {type(node.op).__name__}")
        return op(self.visit(node.left), self.visit(node.right))

    def visit_Compare(self, node):
        left = self.visit(node.left)
        for op_node, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            op = _COMPARE_OPS.get(type(op_node))
            if op is None:
                raise ConditionError(f"Unsupported comparison: {type(op_node).__name__}")
            if not op(left, right):
                return False
            left = right
        return True

    def visit_Call(self, node):
        if node.keywords:
            raise ConditionError("Keyword arguments are not supported")
        args = [self.visit(arg) for arg in node.args]

        if isinstance(node.func, ast.Name):
            helper = HELPERS.get(node.func.id)
            if helper is None:
                raise ConditionError(f"{node.func.id} is not a function")
            return helper(*args)

        if isinstance(node.func, ast.Attribute) and node.func.attr in _STRING_METHODS:
            target = self.visit(node.func.value)
            if not isinstance(target, str):
                raise ConditionError(f"{node.func.attr} can only be called on strings")
            return _STRING_METHODS[node.func.attr](target, *args)

        raise ConditionError("Only helper functions may be called")


def evaluate_custom_condition(code: Optional[str], context: ExecutionContext) -> bool:
    """
    Evaluate a custom boolean expression against the execution context.

    Args:
        code: Expression source. Empty or missing means the condition holds.
        context: Current execution context.

    Returns:
        The truthiness of the expression, or False if it cannot be evaluated.
    """
    if not code:
        return True

    variables = {
        'event': context.event,
        'data': context.data,
        'projectPath': context.project_path,
        'timestamp': context.timestamp,
    }
    variables.update(HELPERS)

    try:
        tree = compile_expression(code)
        return bool(ExpressionEvaluator(variables).evaluate(tree))
    except Exception as e:
        logger.warning(f"Error evaluating custom workflow condition {code!r}: {e}")
        return False


def _file_type(params: Dict[str, Any], context: ExecutionContext) -> bool:
    file_path = context.data.get('filePath')
    extension = params.get('extension')
    if not file_path or not extension:
        return False
    return file_path.split('.')[-1] == extension


def _tool_name(params: Dict[str, Any], context: ExecutionContext) -> bool:
    tool = context.data.get('tool')
    expected = params.get('tool')
    if not tool or not expected:
        return False
    return tool == expected


def _project_path(params: Dict[str, Any], context: ExecutionContext) -> bool:
    path = params.get('path')
    if not context.project_path or not path:
        return False
    return path in context.project_path


def _custom(params: Dict[str, Any], context: ExecutionContext) -> bool:
    return evaluate_custom_condition(params.get('code'), context)


CONDITIONS: Dict[str, Callable[[Dict[str, Any], ExecutionContext], bool]] = {
    'always': lambda params, context: True,
    'file_type': _file_type,
    'tool_name': _tool_name,
    'project_path': _project_path,
    'custom': _custom,
}


def evaluate_condition(trigger: Trigger, context: ExecutionContext) -> bool:
    """
    Decide whether a trigger fires for the given context.

    Unknown condition kinds fire, while errors inside a predicate, including
    a custom expression that cannot be evaluated, do not.

    Args:
        trigger: Workflow trigger.
        context: Execution context of the current dispatch.

    Returns:
        True if the workflow should run.
    """
    condition = trigger.condition or 'always'
    predicate = CONDITIONS.get(condition)
    if predicate is None:
        logger.debug(f"Unknown trigger condition '{condition}', treating as always")
        return True

    try:
        return bool(predicate(trigger.condition_params or {}, context))
    except Exception as e:
        logger.error(f"Error evaluating workflow trigger condition '{condition}': {e}")
        return False
