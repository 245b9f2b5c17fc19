# File: backend/formula_tokenizer.py
#
# Raw expression string -> flat list of tokens. Whitespace (a plain space) is
# dropped; anything outside the formula alphabet is a LexError.

from dataclasses import dataclass
from enum import Enum

from formula_errors import LexError


class TokenKind(Enum):
    NUMBER = "number"
    IDENTIFIER = "identifier"
    OPERATOR = "operator"
    LEFT_PAREN = "leftParen"
    RIGHT_PAREN = "rightParen"
    COMMA = "comma"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    offset: int


OPERATORS = frozenset("+-*/")
_SINGLE_CHAR = {
    "(": TokenKind.LEFT_PAREN,
    ")": TokenKind.RIGHT_PAREN,
    ",": TokenKind.COMMA,
}


def _is_digit(ch):
    return "0" <= ch <= "9"


def _is_identifier_start(ch):
    return ch == "_" or ("a" <= ch <= "z") or ("A" <= ch <= "Z")


def _is_identifier_part(ch):
    return _is_identifier_start(ch) or _is_digit(ch)


def tokenize(expression):
    tokens = []
    n = len(expression)
    i = 0

    while i < n:
        ch = expression[i]

        if ch == " ":
            i += 1
            continue

        if ch in _SINGLE_CHAR:
            tokens.append(Token(_SINGLE_CHAR[ch], ch, i))
            i += 1
            continue

        if ch in OPERATORS:
            tokens.append(Token(TokenKind.OPERATOR, ch, i))
            i += 1
            continue

        # Numbers: digits with at most one '.', a leading '.' needs a digit after it
        if _is_digit(ch) or (ch == "." and i + 1 < n and _is_digit(expression[i + 1])):
            start = i
            seen_dot = ch == "."
            i += 1
            while i < n:
                c = expression[i]
                if _is_digit(c):
                    i += 1
                elif c == "." and not seen_dot:
                    seen_dot = True
                    i += 1
                else:
                    break
            tokens.append(Token(TokenKind.NUMBER, expression[start:i], start))
            continue

        if _is_identifier_start(ch):
            start = i
            i += 1
            while i < n and _is_identifier_part(expression[i]):
                i += 1
            tokens.append(Token(TokenKind.IDENTIFIER, expression[start:i], start))
            continue

        raise LexError(i, ch)

    return tokens
