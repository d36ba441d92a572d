from __future__ import annotations

import os
import re
from typing import Callable

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<string>'[^']*')
      | (?P<op>==|!=|<=|>=|<|>|!|\(|\)|,)
      | (?P<word>[^\s'=!<>(),]+)
    )
    """,
    re.VERBOSE,
)


class ConditionError(ValueError):
    """
    MSBuild 条件表达式无法解析。
    """


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if m is None or m.end() == pos:
            raise ConditionError(f"unexpected character at {pos} in {text!r}")
        pos = m.end()
        for kind in ("string", "op", "word"):
            value = m.group(kind)
            if value is not None:
                if kind == "string":
                    value = value[1:-1]
                tokens.append((kind, value))
                break
    return tokens


def _as_bool(value: str | bool) -> bool:
    if isinstance(value, bool):
        return value
    lowered = value.strip().lower()
    if lowered in {"true", "on", "yes"}:
        return True
    if lowered in {"false", "off", "no"}:
        return False
    raise ConditionError(f"{value!r} is not a boolean")


def _as_number(value: str | bool) -> float:
    if isinstance(value, bool):
        raise ConditionError("cannot compare a boolean numerically")
    try:
        text = value.strip()
        if text.lower().startswith("0x"):
            return float(int(text, 16))
        return float(text)
    except ValueError as exc:
        raise ConditionError(f"{value!r} is not a number") from exc


class _Parser:
    """
    条件表达式的递归下降解析器（or < and < ! < 比较）。
    """

    def __init__(self, tokens: list[tuple[str, str]], base_dir: str) -> None:
        self.tokens = tokens
        self.pos = 0
        self.base_dir = base_dir

    def peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> tuple[str, str]:
        token = self.peek()
        if token is None:
            raise ConditionError("unexpected end of condition")
        self.pos += 1
        return token

    def expect(self, value: str) -> None:
        kind, got = self.take()
        if got != value or kind != "op":
            raise ConditionError(f"expected {value!r}, got {got!r}")

    def _is_word(self, word: str) -> bool:
        token = self.peek()
        return token is not None and token[0] == "word" and token[1].lower() == word

    def parse(self) -> bool:
        result = self.parse_or()
        if self.peek() is not None:
            raise ConditionError(f"unexpected token {self.peek()[1]!r}")
        return result

    def parse_or(self) -> bool:
        left = self.parse_and()
        while self._is_word("or"):
            self.take()
            right = self.parse_and()
            left = left or right
        return left

    def parse_and(self) -> bool:
        left = self.parse_unary()
        while self._is_word("and"):
            self.take()
            right = self.parse_unary()
            left = left and right
        return left

    def parse_unary(self) -> bool:
        token = self.peek()
        if token == ("op", "!"):
            self.take()
            return not self.parse_unary()
        return self.parse_comparison()

    def parse_comparison(self) -> bool:
        left = self.parse_operand()
        token = self.peek()
        if token is None or token[0] != "op" or token[1] not in {"==", "!=", "<", ">", "<=", ">="}:
            return _as_bool(left)
        op = self.take()[1]
        right = self.parse_operand()
        if op in {"==", "!="}:
            same = str(left).lower() == str(right).lower()
            return same if op == "==" else not same
        a, b = _as_number(left), _as_number(right)
        return {"<": a < b, ">": a > b, "<=": a <= b, ">=": a >= b}[op]

    def parse_operand(self) -> str | bool:
        kind, value = self.take()
        if kind == "op" and value == "(":
            result = self.parse_or()
            self.expect(")")
            return result
        if kind == "string":
            return value
        if kind == "word":
            nxt = self.peek()
            if nxt == ("op", "("):
                return self.parse_function(value)
            return value
        raise ConditionError(f"unexpected token {value!r}")

    def parse_function(self, name: str) -> bool:
        self.expect("(")
        args: list[str] = []
        while self.peek() != ("op", ")"):
            kind, value = self.take()
            if kind == "op" and value == ",":
                continue
            args.append(value)
        self.expect(")")
        lowered = name.lower()
        if lowered == "exists" and len(args) == 1:
            path = args[0].strip()
            if not path:
                return False
            return os.path.exists(os.path.join(self.base_dir, path.replace("\\", os.sep)))
        if lowered == "hastrailingslash" and len(args) == 1:
            return args[0].endswith(("/", "\\"))
        raise ConditionError(f"unsupported condition function {name}")


def evaluate_condition(condition: str | None, expand: Callable[[str], str], *, base_dir: str = ".") -> bool:
    """
    对 MSBuild Condition 属性求值（先展开 $(Property)，再解析表达式）。空条件视为 true。
    """
    if condition is None or not condition.strip():
        return True
    return _Parser(_tokenize(expand(condition)), base_dir).parse()
