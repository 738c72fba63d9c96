"""Tokenizer and recursive-descent parser for mapping expressions.

Grammar, lowest precedence first::

    expression  := coalesce ( "?" expression ":" expression )?
    coalesce    := or ( "??" or )*
    or          := and ( ("||" | "or") and )*
    and         := equality ( ("&&" | "and") equality )*
    equality    := relational ( ("==" | "!=") relational )*
    relational  := additive ( ("<" | "<=" | ">" | ">=") additive )*
    additive    := term ( ("+" | "-") term )*
    term        := unary ( ("*" | "/" | "%") unary )*
    unary       := ("!" | "not" | "-") unary | postfix
    postfix     := primary ( "." IDENT | "[" expression "]" )*
    primary     := NUMBER | STRING | "true" | "false" | "null"
                 | IDENT "." IDENT "(" arguments? ")"
                 | IDENT | "(" expression ")"
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NoReturn

from ehrmap.core.exceptions import ExpressionSyntaxError
from ehrmap.expression.nodes import (
    Binary,
    Call,
    Coalesce,
    Conditional,
    Literal,
    Logical,
    Member,
    Name,
    Node,
    Unary,
)

KEYWORDS = {"true", "false", "null", "and", "or", "not"}

# Longest operators first so "==" wins over "="
OPERATORS = (
    "??",
    "&&",
    "||",
    "==",
    "!=",
    "<=",
    ">=",
    "<",
    ">",
    "+",
    "-",
    "*",
    "/",
    "%",
    "!",
    "?",
    ":",
    ".",
    ",",
    "(",
    ")",
    "[",
    "]",
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"'}


@dataclass(frozen=True)
class Token:
    kind: str  # NUMBER, STRING, IDENT, KEYWORD, OP, EOF
    text: str
    position: int
    value: object = None


def _is_digit(char: str) -> bool:
    # ASCII only; str.isdigit() also accepts superscripts that int() rejects
    return "0" <= char <= "9"


def tokenize(source: str) -> list[Token]:
    """Split an expression into tokens.

    Raises:
        ExpressionSyntaxError: On an unterminated string or unexpected character.
    """
    tokens: list[Token] = []
    i = 0
    length = len(source)

    while i < length:
        char = source[i]

        if char.isspace():
            i += 1
            continue

        if _is_digit(char):
            start = i
            while i < length and _is_digit(source[i]):
                i += 1
            is_decimal = False
            if i + 1 < length and source[i] == "." and _is_digit(source[i + 1]):
                is_decimal = True
                i += 1
                while i < length and _is_digit(source[i]):
                    i += 1
            text = source[start:i]
            value = float(text) if is_decimal else int(text)
            tokens.append(Token("NUMBER", text, start, value))
            continue

        if char in ("'", '"'):
            start = i
            quote = char
            i += 1
            chars = []
            while True:
                if i >= length:
                    raise ExpressionSyntaxError("Unterminated string literal", source, start)
                current = source[i]
                if current == "\\" and i + 1 < length:
                    escaped = source[i + 1]
                    chars.append(_ESCAPES.get(escaped, "\\" + escaped))
                    i += 2
                    continue
                if current == quote:
                    i += 1
                    break
                chars.append(current)
                i += 1
            tokens.append(Token("STRING", source[start:i], start, "".join(chars)))
            continue

        if char.isalpha() or char in ("_", "$"):
            start = i
            while i < length and (source[i].isalnum() or source[i] in ("_", "$")):
                i += 1
            text = source[start:i]
            kind = "KEYWORD" if text in KEYWORDS else "IDENT"
            tokens.append(Token(kind, text, start, text))
            continue

        for op in OPERATORS:
            if source.startswith(op, i):
                tokens.append(Token("OP", op, i, op))
                i += len(op)
                break
        else:
            raise ExpressionSyntaxError(f"Unexpected character '{char}'", source, i)

    tokens.append(Token("EOF", "", length))
    return tokens


class Parser:
    """Recursive-descent parser producing a Node tree."""

    def __init__(self, source: str) -> None:
        self.source = source
        self.tokens = tokenize(source)
        self.pos = 0

    # Token helpers

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def _peek(self, offset: int = 1) -> Token:
        index = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[index]

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.kind != "EOF":
            self.pos += 1
        return token

    def _check(self, *texts: str) -> bool:
        token = self.current
        return token.kind in ("OP", "KEYWORD") and token.text in texts

    def _expect(self, text: str) -> Token:
        if not self._check(text):
            self._error(f"Expected '{text}'")
        return self._advance()

    def _error(self, message: str) -> NoReturn:
        token = self.current
        found = "end of expression" if token.kind == "EOF" else f"'{token.text}'"
        raise ExpressionSyntaxError(f"{message}, found {found}", self.source, token.position)

    # Grammar

    def parse(self) -> Node:
        if self.current.kind == "EOF":
            raise ExpressionSyntaxError("Expression cannot be empty", self.source, 0)
        node = self._expression()
        if self.current.kind != "EOF":
            self._error("Unexpected token")
        return node

    def _expression(self) -> Node:
        test = self._coalesce()
        if self._check("?"):
            self._advance()
            if_true = self._expression()
            self._expect(":")
            if_false = self._expression()
            return Conditional(test, if_true, if_false)
        return test

    def _coalesce(self) -> Node:
        node = self._or()
        while self._check("??"):
            self._advance()
            node = Coalesce(node, self._or())
        return node

    def _or(self) -> Node:
        node = self._and()
        while self._check("||", "or"):
            self._advance()
            node = Logical("||", node, self._and())
        return node

    def _and(self) -> Node:
        node = self._equality()
        while self._check("&&", "and"):
            self._advance()
            node = Logical("&&", node, self._equality())
        return node

    def _equality(self) -> Node:
        node = self._relational()
        while self._check("==", "!="):
            operator = self._advance().text
            node = Binary(operator, node, self._relational())
        return node

    def _relational(self) -> Node:
        node = self._additive()
        while self._check("<", "<=", ">", ">="):
            operator = self._advance().text
            node = Binary(operator, node, self._additive())
        return node

    def _additive(self) -> Node:
        node = self._term()
        while self._check("+", "-"):
            operator = self._advance().text
            node = Binary(operator, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._unary()
        while self._check("*", "/", "%"):
            operator = self._advance().text
            node = Binary(operator, node, self._unary())
        return node

    def _unary(self) -> Node:
        if self._check("!", "not"):
            self._advance()
            return Unary("!", self._unary())
        if self._check("-"):
            self._advance()
            return Unary("-", self._unary())
        return self._postfix()

    def _postfix(self) -> Node:
        node = self._primary()
        while True:
            if self._check("."):
                self._advance()
                if self.current.kind not in ("IDENT", "KEYWORD"):
                    self._error("Expected property name after '.'")
                name = self._advance().text
                if self._check("("):
                    self._error("Function calls are only allowed on a namespace")
                node = Member(node, Literal(name))
            elif self._check("["):
                self._advance()
                key = self._expression()
                self._expect("]")
                node = Member(node, key)
            elif self._check("("):
                self._error("Function calls are only allowed on a namespace")
            else:
                return node

    def _primary(self) -> Node:
        token = self.current

        if token.kind in ("NUMBER", "STRING"):
            self._advance()
            return Literal(token.value)

        if token.kind == "KEYWORD":
            if token.text in ("true", "false"):
                self._advance()
                return Literal(token.text == "true")
            if token.text == "null":
                self._advance()
                return Literal(None)
            self._error("Unexpected keyword")

        if token.kind == "IDENT":
            if (
                self._peek(1).text == "."
                and self._peek(2).kind == "IDENT"
                and self._peek(3).text == "("
            ):
                return self._call()
            self._advance()
            return Name(token.text)

        if self._check("("):
            self._advance()
            node = self._expression()
            self._expect(")")
            return node

        self._error("Unexpected token")

    def _call(self) -> Node:
        namespace = self._advance().text
        self._expect(".")
        function = self._advance().text
        self._expect("(")
        args: list[Node] = []
        if not self._check(")"):
            args.append(self._expression())
            while self._check(","):
                self._advance()
                args.append(self._expression())
        self._expect(")")
        return Call(namespace, function, tuple(args))


def parse(source: str) -> Node:
    """Parse expression text into a Node tree.

    Raises:
        ExpressionSyntaxError: If the text is not a valid expression, including
            nesting too deep for the parser.
    """
    try:
        return Parser(source).parse()
    except RecursionError as e:
        raise ExpressionSyntaxError("Expression is nested too deeply", source) from e
    except ValueError as e:
        raise ExpressionSyntaxError(f"Invalid expression: {e}", source) from e
