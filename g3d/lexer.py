"""
Tokenizer for G3D logical lines and expression bodies.

The parser works on one logical line at a time, so tokens carry their offset
into that line; expression text is always recovered as a raw slice of the
line rather than re-joined from tokens.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

# ============================================================================
# TOKEN SYSTEM
# ============================================================================

TOKEN_TYPES = [
    ("STRING", r"\"[^\"]*\"|'[^']*'"),
    ("NUMBER", r"(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?"),
    ("IDENT", r"[a-zA-Z_][a-zA-Z0-9_]*"),

    # Order matters: two-character operators before their prefixes
    ("COMPARE", r">=|<=|==|!=|>|<"),
    ("POWER", r"\^|\*\*"),
    ("EQUALS", r"="),
    ("PLUS", r"\+"),
    ("MINUS", r"-"),
    ("MULTIPLY", r"\*"),
    ("DIVIDE", r"/"),

    ("LPAREN", r"\("),
    ("RPAREN", r"\)"),
    ("LBRACKET", r"\["),
    ("RBRACKET", r"\]"),
    ("COMMA", r","),

    ("WHITESPACE", r"\s+"),
    ("MISMATCH", r"."),
]

token_regex = "|".join(f"(?P<{name}>{pattern})" for name, pattern in TOKEN_TYPES)
token_pattern = re.compile(token_regex)

OPENERS = {"LPAREN": "RPAREN", "LBRACKET": "RBRACKET"}
CLOSERS = {"RPAREN", "RBRACKET"}


@dataclass
class Token:
    """Token with its offset in the logical line"""
    type: str
    value: str
    position: int = 0

    @property
    def end(self) -> int:
        return self.position + len(self.value)

    def is_keyword(self, *words: str) -> bool:
        return self.type == "IDENT" and self.value.upper() in words

    def __repr__(self):
        return f"{self.type}:{self.value}@{self.position}"


def tokenize(text: str) -> List[Token]:
    """
    Split a logical line into tokens, dropping whitespace.

    Args:
        text: One logical G3D line or an expression body

    Returns:
        List of tokens; characters the grammar does not know become
        MISMATCH tokens and are left for the caller to judge.
    """
    tokens = []
    for match in token_pattern.finditer(text):
        kind = match.lastgroup
        if kind == "WHITESPACE":
            continue
        tokens.append(Token(kind, match.group(), match.start()))
    return tokens


def bracket_depth_ok(tokens: Sequence[Token]) -> bool:
    """True when parentheses and brackets are balanced and properly nested."""
    stack = []
    for tok in tokens:
        if tok.type in OPENERS:
            stack.append(OPENERS[tok.type])
        elif tok.type in CLOSERS:
            if not stack or stack.pop() != tok.type:
                return False
    return not stack


def split_top_level(tokens: Sequence[Token], separator: str = "COMMA") -> List[List[Token]]:
    """
    Split a token run on separators that sit outside any bracket pair.

    Empty groups are kept so callers can reject `[a,,b]`.
    """
    groups: List[List[Token]] = [[]]
    depth = 0
    for tok in tokens:
        if tok.type in OPENERS:
            depth += 1
        elif tok.type in CLOSERS:
            depth -= 1
        if tok.type == separator and depth == 0:
            groups.append([])
        else:
            groups[-1].append(tok)
    return groups


def find_top_level(tokens: Sequence[Token], keyword: str, start: int = 0) -> Optional[int]:
    """Index of the first depth-0 IDENT token equal to `keyword` (case-insensitive)"""
    depth = 0
    for i, tok in enumerate(tokens):
        if tok.type in OPENERS:
            depth += 1
        elif tok.type in CLOSERS:
            depth -= 1
        elif i >= start and depth == 0 and tok.is_keyword(keyword):
            return i
    return None


def identifiers(text: str) -> List[str]:
    """Identifiers referenced by an expression, in order of first use"""
    seen = []
    for tok in tokenize(text):
        if tok.type == "IDENT" and tok.value not in seen:
            seen.append(tok.value)
    return seen
