# File: backend/formula_parser.py
#
# Tokens -> AST. Recursive descent, precedence low to high:
#   additive (+ -)  ->  multiplicative (* /)  ->  unary (+ -)  ->  primary
# primary := number | identifier | identifier '(' [expr (',' expr)*] ')' | '(' expr ')'
#
# The whole token stream must be consumed; a partial parse is a ParseError.

from dataclasses import dataclass
from typing import Tuple, Union

from formula_errors import ParseError
from formula_tokenizer import TokenKind, tokenize
from simulation_config import EngineLimits


# --- AST (closed set of node kinds; evaluator and analyzer match on all five) ---

@dataclass(frozen=True)
class NumberLiteral:
    value: float


@dataclass(frozen=True)
class Reference:
    name: str


@dataclass(frozen=True)
class UnaryExpression:
    operator: str
    argument: "Node"


@dataclass(frozen=True)
class BinaryExpression:
    operator: str
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class CallExpression:
    callee: str
    arguments: Tuple["Node", ...]


Node = Union[NumberLiteral, Reference, UnaryExpression, BinaryExpression, CallExpression]
NODE_TYPES = (NumberLiteral, Reference, UnaryExpression, BinaryExpression, CallExpression)


def children(node):
    """Direct sub-expressions of a node, left to right."""
    if isinstance(node, (NumberLiteral, Reference)):
        return ()
    if isinstance(node, UnaryExpression):
        return (node.argument,)
    if isinstance(node, BinaryExpression):
        return (node.left, node.right)
    if isinstance(node, CallExpression):
        return node.arguments
    raise TypeError(f"Unknown AST node: {node!r}")


def ast_depth(node):
    """Height of the tree, computed without recursion."""
    deepest = 0
    stack = [(node, 1)]
    while stack:
        current, depth = stack.pop()
        if depth > deepest:
            deepest = depth
        for child in children(current):
            stack.append((child, depth + 1))
    return deepest


class _Parser:

    def __init__(self, tokens, expression, limits):
        self.tokens = tokens
        self.expression = expression
        self.limits = limits
        self.pos = 0
        self.nesting = 0

    # --- token helpers ---

    def _peek(self):
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _advance(self):
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def _fail_here(self):
        token = self._peek()
        if token is None:
            raise ParseError(len(self.expression))
        raise ParseError(token.offset, token.text)

    def _expect(self, kind):
        token = self._peek()
        if token is None or token.kind is not kind:
            self._fail_here()
        return self._advance()

    def _is_operator(self, token, ops):
        return token is not None and token.kind is TokenKind.OPERATOR and token.text in ops

    def _enter(self, token):
        self.nesting += 1
        if self.nesting > self.limits.max_nesting:
            raise ParseError(
                token.offset, token.text,
                message=f"Expression nested deeper than {self.limits.max_nesting} levels "
                        f"at position {token.offset}",
            )

    def _leave(self):
        self.nesting -= 1

    # --- grammar ---

    def parse(self):
        node = self._additive()
        if self.pos < len(self.tokens):
            self._fail_here()
        return node

    def _additive(self):
        node = self._multiplicative()
        while self._is_operator(self._peek(), "+-"):
            op = self._advance().text
            node = BinaryExpression(op, node, self._multiplicative())
        return node

    def _multiplicative(self):
        node = self._unary()
        while self._is_operator(self._peek(), "*/"):
            op = self._advance().text
            node = BinaryExpression(op, node, self._unary())
        return node

    def _unary(self):
        token = self._peek()
        if self._is_operator(token, "+-"):
            self._advance()
            self._enter(token)
            try:
                return UnaryExpression(token.text, self._unary())
            finally:
                self._leave()
        return self._primary()

    def _primary(self):
        token = self._peek()
        if token is None:
            self._fail_here()

        if token.kind is TokenKind.NUMBER:
            self._advance()
            return NumberLiteral(float(token.text))

        if token.kind is TokenKind.IDENTIFIER:
            self._advance()
            nxt = self._peek()
            if nxt is not None and nxt.kind is TokenKind.LEFT_PAREN:
                self._advance()
                self._enter(nxt)
                try:
                    return CallExpression(token.text, self._call_arguments())
                finally:
                    self._leave()
            return Reference(token.text)

        if token.kind is TokenKind.LEFT_PAREN:
            self._advance()
            self._enter(token)
            try:
                node = self._additive()
            finally:
                self._leave()
            self._expect(TokenKind.RIGHT_PAREN)
            return node

        self._fail_here()

    def _call_arguments(self):
        args = []
        nxt = self._peek()
        if nxt is not None and nxt.kind is TokenKind.RIGHT_PAREN:
            self._advance()
            return ()
        while True:
            args.append(self._additive())
            nxt = self._peek()
            if nxt is not None and nxt.kind is TokenKind.COMMA:
                self._advance()
                continue
            break
        self._expect(TokenKind.RIGHT_PAREN)
        return tuple(args)


def parse(tokens, expression="", limits=None):
    """Build an AST from tokens; `expression` is only used for end-of-input offsets."""
    limits = limits or EngineLimits()
    node = _Parser(list(tokens), expression, limits).parse()
    if ast_depth(node) > limits.max_depth:
        raise ParseError(
            0, None,
            message=f"Expression is deeper than {limits.max_depth} levels",
        )
    return node


def parse_formula(expression, limits=None):
    """Tokenize and parse in one step. Idempotent and side-effect free."""
    limits = limits or EngineLimits()
    if len(expression) > limits.max_expression_length:
        raise ParseError(
            limits.max_expression_length, None,
            message=f"Expression is longer than {limits.max_expression_length} characters",
        )
    return parse(tokenize(expression), expression, limits)
