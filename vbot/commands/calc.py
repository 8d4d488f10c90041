from __future__ import annotations

import ast
import asyncio
import math
import operator
import re
from typing import Any, Callable

from vbot.commands.base import BaseCommand
from vbot.commands.errors import CommandUsageError
from vbot.models import InboundMessage
from vbot.transport.base import Connection

MAX_EXPRESSION_CHARS = 200
MAX_EXPONENT = 1000
MAX_INT_BITS = 2048

FUNCTIONS: dict[str, Callable[..., Any]] = {
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "sqrt": math.sqrt,
    "akar": math.sqrt,
    "abs": abs,
    "floor": math.floor,
    "ceil": math.ceil,
    "round": round,
    "log": math.log10,
    "ln": math.log,
}
CONSTANTS = {"pi": math.pi, "e": math.e}

BINARY_OPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
UNARY_OPS: dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


class CalcError(ValueError):
    pass


def normalize_expression(expr: str) -> str:
    text = expr.strip().lower()
    text = text.replace("×", "*").replace("÷", "/")
    text = re.sub(r"(?<=[\d)\s])x(?=[\d(\s])", "*", text)
    text = text.replace(":", "/").replace(",", ".").replace("^", "**")
    return text


def _bounded(value: Any) -> Any:
    if isinstance(value, int) and value.bit_length() > MAX_INT_BITS:
        raise CalcError("result too large")
    return value


def _check_int_growth(op: ast.operator, left: Any, right: Any) -> None:
    """Reject integer products and powers whose size alone would stall the evaluator."""
    if not (isinstance(left, int) and isinstance(right, int)):
        return
    if isinstance(op, ast.Pow) and right > 0 and abs(left).bit_length() * right > MAX_INT_BITS:
        raise CalcError("result too large")
    if isinstance(op, ast.Mult) and left.bit_length() + right.bit_length() > MAX_INT_BITS + 1:
        raise CalcError("result too large")


def _evaluate(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.Name):
        if node.id in CONSTANTS:
            return CONSTANTS[node.id]
        raise CalcError(f"unknown name {node.id!r}")
    if isinstance(node, ast.BinOp) and type(node.op) in BINARY_OPS:
        left = _evaluate(node.left)
        right = _evaluate(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise CalcError("exponent too large")
        _check_int_growth(node.op, left, right)
        return _bounded(BINARY_OPS[type(node.op)](left, right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in UNARY_OPS:
        return UNARY_OPS[type(node.op)](_evaluate(node.operand))
    if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and not node.keywords:
        func = FUNCTIONS.get(node.func.id)
        if func is None:
            raise CalcError(f"unknown function {node.func.id!r}")
        return _bounded(func(*(_evaluate(arg) for arg in node.args)))
    raise CalcError("unsupported expression")


def evaluate(expr: str) -> float:
    text = normalize_expression(expr)
    if not text:
        raise CalcError("empty expression")
    if len(text) > MAX_EXPRESSION_CHARS:
        raise CalcError("expression too long")
    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError as exc:
        raise CalcError("invalid syntax") from exc
    try:
        result = _evaluate(tree)
    except ZeroDivisionError as exc:
        raise CalcError("division by zero") from exc
    except CalcError:
        raise
    except (OverflowError, TypeError, ValueError) as exc:
        raise CalcError(str(exc)) from exc
    if isinstance(result, float) and not math.isfinite(result):
        raise CalcError("result is not finite")
    return result


def format_number(value: float) -> str:
    """Indonesian grouping: ``.`` for thousands, ``,`` for decimals, at most 10 fraction digits."""
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e15:
        value = int(value)
    if isinstance(value, int):
        return f"{value:,}".replace(",", ".")
    text = f"{value:,.10f}".rstrip("0").rstrip(".")
    return text.replace(",", "_").replace(".", ",").replace("_", ".")


class CalcCommand(BaseCommand):
    name = "calc"
    aliases = ("itung", "hitung")
    description = "Calculator"
    usage = "calc <expression>"
    category = "Tools"

    async def run(self, message: InboundMessage, connection: Connection, args: str) -> None:
        expr = args.strip()
        if not expr:
            raise CommandUsageError(
                f"❌ Give an expression.\n\nUsage: {self.usage_text()}\n"
                f"Example: {self.runtime.config.prefix}calc (2 + 3) x 4, sqrt(16), 2^10"
            )
        try:
            result = await asyncio.to_thread(evaluate, expr)
        except CalcError as exc:
            raise CommandUsageError(f"❌ Cannot calculate: {exc}.") from exc
        await self.reply(connection, message, f"🧮 {expr}\n= *{format_number(result)}*")
