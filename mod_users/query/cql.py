"""
Parser for the CQL subset accepted by the user endpoints.

    query    := expr [ "sortBy" sortkey+ ]
    expr     := clause ( boolean clause )*
    clause   := "(" expr ")" | index relation term | term
    sortkey  := index ( "/" modifier )*

Booleans (and, or, not) have equal precedence and associate to the left,
the same way CQL defines them. Relations may carry "/modifier" suffixes,
which are parsed and kept but not interpreted.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from mod_users.core.errors import QueryParseError

SYMBOL_RELATIONS = ("==", "<>", "<=", ">=", "=", "<", ">")
WORD_RELATIONS = ("adj", "all", "any")
BOOLEANS = ("and", "or", "not")
SERVER_CHOICE = "cql.serverChoice"

_WORD_STOP = set(' \t\r\n()"=<>/')


@dataclass(frozen=True)
class Token:
    kind: str  # "(", ")", "/", "rel", "word", "string", "eof"
    value: str
    pos: int


@dataclass
class Clause:
    index: str
    relation: str
    term: str
    modifiers: Tuple[str, ...] = ()


@dataclass
class BooleanNode:
    op: str
    left: "Node"
    right: "Node"


Node = Union[Clause, BooleanNode]


@dataclass
class SortKey:
    index: str
    descending: bool = False


@dataclass
class CQLQuery:
    root: Node
    sort: List[SortKey] = field(default_factory=list)


def tokenize(text: str) -> List[Token]:
    tokens = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if ch in "()/":
            tokens.append(Token(ch, ch, i))
            i += 1
            continue
        if ch in "=<>":
            for symbol in SYMBOL_RELATIONS:
                if text.startswith(symbol, i):
                    tokens.append(Token("rel", symbol, i))
                    i += len(symbol)
                    break
            continue
        if ch == '"':
            start = i
            i += 1
            chars = []
            while i < n and text[i] != '"':
                # keep escapes for the wildcard handling, except \" itself
                if text[i] == "\\" and i + 1 < n:
                    if text[i + 1] == '"':
                        chars.append('"')
                    else:
                        chars.append(text[i:i + 2])
                    i += 2
                    continue
                chars.append(text[i])
                i += 1
            if i >= n:
                raise QueryParseError("Unterminated quoted string", text[start:])
            tokens.append(Token("string", "".join(chars), start))
            i += 1
            continue
        start = i
        while i < n and text[i] not in _WORD_STOP:
            i += 1
        tokens.append(Token("word", text[start:i], start))
    tokens.append(Token("eof", "", n))
    return tokens


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.pos = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def peek(self, offset: int = 1) -> Token:
        idx = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[idx]

    def advance(self) -> Token:
        token = self.current
        if token.kind != "eof":
            self.pos += 1
        return token

    def error(self, message: str, token: Optional[Token] = None):
        token = token or self.current
        fragment = self.text[token.pos:].strip() or self.text
        raise QueryParseError(message, fragment)

    def _is_keyword(self, token: Token, *words: str) -> bool:
        return token.kind == "word" and token.value.lower() in words

    def parse(self) -> CQLQuery:
        if self.current.kind == "eof":
            self.error("Empty query")
        root = self.parse_expr()
        sort = []
        if self._is_keyword(self.current, "sortby"):
            self.advance()
            sort = self.parse_sort()
        if self.current.kind != "eof":
            self.error("Unexpected input")
        return CQLQuery(root=root, sort=sort)

    def parse_expr(self) -> Node:
        node = self.parse_clause()
        while self._is_keyword(self.current, *BOOLEANS, "prox"):
            op = self.advance().value.lower()
            if op == "prox":
                self.error("Proximity queries are not supported")
            self._skip_modifiers()
            right = self.parse_clause()
            node = BooleanNode(op, node, right)
        return node

    def parse_clause(self) -> Node:
        token = self.current
        if token.kind == "(":
            self.advance()
            node = self.parse_expr()
            if self.current.kind != ")":
                self.error("Missing closing parenthesis")
            self.advance()
            return node
        if token.kind not in ("word", "string"):
            self.error("Expected search clause")

        first = self.advance()
        nxt = self.current
        word_relation = (
            self._is_keyword(nxt, *WORD_RELATIONS)
            and self.peek().kind in ("word", "string")
        )
        if nxt.kind == "rel" or word_relation:
            if first.kind == "string":
                self.error("Index must not be quoted", first)
            relation = self.advance().value.lower()
            modifiers = self._skip_modifiers()
            term = self.current
            if term.kind not in ("word", "string"):
                self.error("Expected search term")
            self.advance()
            return Clause(first.value, relation, term.value, modifiers)
        return Clause(SERVER_CHOICE, "=", first.value)

    def _skip_modifiers(self) -> Tuple[str, ...]:
        modifiers = []
        while self.current.kind == "/":
            self.advance()
            if self.current.kind != "word":
                self.error("Expected modifier name")
            modifiers.append(self.advance().value)
        return tuple(modifiers)

    def parse_sort(self) -> List[SortKey]:
        keys = []
        while self.current.kind == "word":
            index = self.advance().value
            descending = False
            for modifier in self._skip_modifiers():
                name = modifier.lower()
                if name in ("sort.descending", "descending"):
                    descending = True
                elif name in ("sort.ascending", "ascending"):
                    descending = False
            keys.append(SortKey(index, descending))
        if not keys:
            self.error("sortBy requires at least one index")
        return keys


def parse(text: str) -> CQLQuery:
    """Parse a CQL string. Raises QueryParseError on malformed input."""
    return _Parser(text).parse()
