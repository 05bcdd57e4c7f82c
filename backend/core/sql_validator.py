"""
SQL validator: static sandbox for model-generated queries.

The generated query is untrusted input. Nothing reaches a database connection
unless every check below passes, evaluated on the literal query text:

  1. single SELECT statement (after leading whitespace/comments), ASCII only
  2. no statement separators, no mutating/DDL/permission verbs, no dangerous
     server functions, matched as whole tokens and never as substrings
  3. the tenant column is only ever compared with `= $1` (or joined to another
     tenant column), every table read by any SELECT is scoped by such a
     predicate ANDed into its WHERE clause or its own JOIN ... ON clause, and
     `$1` is bound to the caller
  4. a top-level row limit of at most the row cap

Rewriting the row limit is the only change made; anything else unsafe is
rejected.
"""
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlparse import lexer
from sqlparse import tokens as T

from core.errors import ErrorKind
from models.query import ValidationVerdict

TENANT_COLUMN = "store_id"
TENANT_PLACEHOLDER = "$1"
DEFAULT_ROW_CAP = 100

DENYLIST = frozenset({
    "INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "CREATE", "TRUNCATE",
    "GRANT", "REVOKE", "EXEC", "EXECUTE", "COPY", "SET", "RESET", "CALL",
    "RETURNING", "MERGE", "INTO", "LOCK", "VACUUM", "REINDEX", "LISTEN",
    "NOTIFY", "PREPARE", "DEALLOCATE",
})

DANGEROUS_FUNCTIONS = frozenset({
    "PG_READ_FILE", "PG_READ_BINARY_FILE", "PG_WRITE_FILE", "PG_LS_DIR",
    "PG_STAT_FILE", "PG_SLEEP", "PG_TERMINATE_BACKEND", "PG_CANCEL_BACKEND",
    "PG_RELOAD_CONF", "PG_ROTATE_LOGFILE", "SET_CONFIG", "DBLINK",
    "DBLINK_CONNECT", "DBLINK_EXEC", "LO_IMPORT", "LO_EXPORT", "LO_GET",
    "LO_PUT", "QUERY_TO_XML", "QUERY_TO_JSON",
})

COMPOUND_OPERATORS = frozenset({"UNION", "INTERSECT", "EXCEPT"})
ROW_LIMIT_KEYWORDS = frozenset({"LIMIT", "FETCH"})

# Keywords that end a WHERE or ON clause at its own nesting level.
_CLAUSE_END = frozenset({
    "WHERE", "ON", "USING", "JOIN", "GROUP", "ORDER", "HAVING", "WINDOW",
    "LIMIT", "OFFSET", "FETCH", "FOR",
})
# Keywords that, met before WHERE/ON, mean the predicate sits in another clause.
_CLAUSE_BREAK = _CLAUSE_END | {"SELECT", "FROM", "CASE", "WHEN", "THEN", "ELSE", "END"}
# Keywords that end the FROM list.
_FROM_END = frozenset({"WHERE", "GROUP", "ORDER", "HAVING", "WINDOW", "LIMIT", "OFFSET", "FETCH", "FOR"})
# Keywords that cannot be a table alias.
_ALIAS_STOP = _CLAUSE_BREAK | {
    "AS", "LEFT", "RIGHT", "INNER", "OUTER", "FULL", "CROSS", "NATURAL", "LATERAL",
} | COMPOUND_OPERATORS
# Operators that make the tenant column part of something other than `= $1`.
_COMPARISON_WORDS = frozenset({
    "IN", "IS", "LIKE", "ILIKE", "RLIKE", "REGEXP", "GLOB", "MATCH", "SIMILAR",
    "BETWEEN", "NOT", "CASE", "WHEN", "ANY", "SOME", "ALL",
})

_WORD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_NON_ASCII_RE = re.compile(r"[^\x20-\x7E\t\n\r]")


@dataclass(frozen=True)
class _Token:
    ttype: object
    value: str
    start: int
    depth: int          # parenthesis nesting level

    @property
    def end(self) -> int:
        return self.start + len(self.value)

    @property
    def is_string(self) -> bool:
        return self.ttype in T.String

    def is_punct(self, char: str) -> bool:
        return self.ttype in T.Punctuation and self.value == char

    def words(self) -> list[str]:
        """Upper-cased whole words of a non-literal token."""
        if self.is_string:
            return []
        return [w.upper() for w in _WORD_RE.findall(self.value)]

    def is_keyword(self, *names: str) -> bool:
        return self.ttype in T.Keyword and not set(names).isdisjoint(self.words())

    def is_operator(self) -> bool:
        return self.ttype in T.Operator or self.is_punct("::")

    def is_placeholder(self, value: str = TENANT_PLACEHOLDER) -> bool:
        return self.ttype in T.Name.Placeholder and self.value == value

    def identifier(self) -> Optional[str]:
        """Lower-cased name of an identifier token, quotes removed."""
        if self.ttype in T.String.Symbol or (self.ttype in T.Name and self.ttype not in T.Name.Placeholder):
            return self.value.strip('"`[]').lower()
        return None


@dataclass(frozen=True)
class _ColumnRef:
    start: int          # token index of the qualifier (or the column)
    end: int            # token index just past the column
    qualifier: Optional[str]
    column: str


@dataclass(frozen=True)
class _TableRef:
    name: str
    alias: str
    position: int       # token index of the table name


@dataclass(frozen=True)
class _TenantPredicate:
    start: int
    end: int
    qualifier: Optional[str]


class _Rejected(Exception):
    def __init__(self, kind: ErrorKind, detail: str):
        super().__init__(detail)
        self.kind = kind
        self.detail = detail


def _significant_tokens(sql: str) -> list[_Token]:
    """Lex the query, dropping whitespace and comments but keeping offsets."""
    tokens: list[_Token] = []
    pos = 0
    depth = 0
    for ttype, value in lexer.tokenize(sql):
        start = pos
        pos += len(value)
        if ttype in T.Whitespace or ttype in T.Comment:
            continue
        if ttype in T.Punctuation and value == ")":
            depth = max(depth - 1, 0)
        tokens.append(_Token(ttype, value, start, depth))
        if ttype in T.Punctuation and value == "(":
            depth += 1
    return tokens


def _reject(kind: ErrorKind, detail: str) -> ValidationVerdict:
    return ValidationVerdict(accepted=False, rejection_reason=kind, detail=detail)


def _at(tokens: Sequence[_Token], index: int) -> Optional[_Token]:
    return tokens[index] if 0 <= index < len(tokens) else None


def _column_ref_at(tokens: Sequence[_Token], index: int) -> Optional[_ColumnRef]:
    """`name` or `qualifier.name` starting at index; function calls excluded."""
    tok = _at(tokens, index)
    if tok is None or tok.identifier() is None:
        return None
    dot, column = _at(tokens, index + 1), _at(tokens, index + 2)
    if dot is not None and dot.is_punct(".") and column is not None and column.identifier() is not None:
        ref = _ColumnRef(index, index + 3, tok.identifier(), column.identifier())
    else:
        ref = _ColumnRef(index, index + 1, None, tok.identifier())
    after = _at(tokens, ref.end)
    if after is not None and after.is_punct("("):
        return None
    return ref


def _column_refs(tokens: Sequence[_Token]) -> list[_ColumnRef]:
    refs = []
    i = 0
    while i < len(tokens):
        ref = _column_ref_at(tokens, i)
        if ref is None:
            i += 1
            continue
        refs.append(ref)
        i = ref.end
    return refs


def _is_tenant_ref_at(tokens: Sequence[_Token], index: int) -> bool:
    ref = _column_ref_at(tokens, index)
    return ref is not None and ref.column == TENANT_COLUMN


def _tenant_ref_ending_at(tokens: Sequence[_Token], end: int) -> bool:
    return any(_is_tenant_ref_at(tokens, start) and _column_ref_at(tokens, start).end == end
               for start in (end - 3, end - 1))


def _inside_expression(tokens: Sequence[_Token], index: int) -> bool:
    """True when the token sits in parentheses that are not a subquery or a USING list."""
    depth = tokens[index].depth
    if depth == 0:
        return False
    for j in range(index - 1, -1, -1):
        tok = tokens[j]
        if tok.depth == depth - 1 and tok.is_punct("("):
            nxt, before = _at(tokens, j + 1), _at(tokens, j - 1)
            if nxt is not None and nxt.is_keyword("SELECT"):
                return False
            return not (before is not None and before.is_keyword("USING"))
    return False


def _tenant_use(tokens: Sequence[_Token], ref: _ColumnRef) -> Optional[_TenantPredicate]:
    """
    Classify one reference to the tenant column.
    Returns the `= $1` predicate it forms, None for a plain or tenant-to-tenant
    use, and raises _Rejected for anything else.
    """
    def _refuse(how: str) -> _Rejected:
        return _Rejected(ErrorKind.MISSING_TENANT_SCOPE, f"{TENANT_COLUMN} {how}")

    if _inside_expression(tokens, ref.start):
        raise _refuse("used inside an expression")

    prev, nxt = _at(tokens, ref.start - 1), _at(tokens, ref.end)

    if nxt is not None and (nxt.is_operator() or nxt.is_keyword(*_COMPARISON_WORDS)):
        operand = _at(tokens, ref.end + 1)
        if nxt.value != "=" or operand is None:
            raise _refuse(f"compared with {nxt.value!r}")
        if operand.is_placeholder():
            trailing = _at(tokens, ref.end + 2)
            if trailing is not None and trailing.is_operator():
                raise _refuse(f"compared with an expression around {TENANT_PLACEHOLDER}")
            return _TenantPredicate(ref.start, ref.end + 2, ref.qualifier)
        if _is_tenant_ref_at(tokens, ref.end + 1):
            return None
        raise _refuse(f"compared with {operand.value!r}")

    if prev is not None and (prev.is_operator() or prev.is_keyword(*_COMPARISON_WORDS)):
        operand = _at(tokens, ref.start - 2)
        if prev.value != "=" or operand is None:
            raise _refuse(f"compared with {prev.value!r}")
        if operand.is_placeholder():
            leading = _at(tokens, ref.start - 3)
            if leading is not None and leading.is_operator():
                raise _refuse(f"compared with an expression around {TENANT_PLACEHOLDER}")
            return _TenantPredicate(ref.start - 2, ref.end, ref.qualifier)
        if _tenant_ref_ending_at(tokens, ref.start - 1):
            return None
        raise _refuse(f"compared with {operand.value!r}")

    return None


def _anchor(tokens: Sequence[_Token], pred: _TenantPredicate) -> Optional[int]:
    """Index of the WHERE/ON keyword the predicate is ANDed into, or None."""
    depth = tokens[pred.start].depth
    prev = _at(tokens, pred.start - 1)
    if prev is None or prev.depth != depth or not prev.is_keyword("WHERE", "ON", "AND"):
        return None

    for tok in tokens[pred.end:]:
        if tok.depth < depth:
            break
        if tok.depth > depth or tok.ttype not in T.Keyword:
            continue
        if tok.is_keyword("OR"):
            return None
        if tok.is_keyword(*_CLAUSE_END):
            break

    pending_and = prev.is_keyword("AND")     # an AND may belong to BETWEEN ... AND
    for j in range(pred.start - 1, -1, -1):
        tok = tokens[j]
        if tok.depth < depth:
            return None
        if tok.depth > depth or tok.ttype not in T.Keyword:
            continue
        if tok.is_keyword("WHERE", "ON"):
            return j
        if tok.is_keyword("OR", *_CLAUSE_BREAK):
            return None
        if tok.is_keyword("BETWEEN") and pending_and:
            return None
        if tok.is_keyword("AND") and j != pred.start - 1:
            pending_and = False
    return None


def _scope_end(tokens: Sequence[_Token], start: int) -> int:
    depth = tokens[start].depth
    for j in range(start + 1, len(tokens)):
        if tokens[j].depth < depth:
            return j
    return len(tokens)


def _scope_tables(tokens: Sequence[_Token], start: int, end: int) -> list[_TableRef]:
    """Tables named in the FROM list and JOINs of one SELECT, at its own level."""
    depth = tokens[start].depth
    tables: list[_TableRef] = []
    in_from = expect_table = False
    i = start + 1
    while i < end:
        tok = tokens[i]
        if tok.depth != depth:
            i += 1
            continue
        if tok.is_keyword("FROM"):
            in_from = expect_table = True
        elif tok.is_keyword("JOIN"):
            expect_table = True
        elif tok.is_keyword(*_FROM_END):
            in_from = expect_table = False
        elif tok.is_punct(",") and in_from:
            expect_table = True
        elif expect_table and tok.ttype not in T.Keyword:
            expect_table = False
            ref = _column_ref_at(tokens, i)
            if ref is not None:
                alias = ref.column
                j = ref.end
                if _at(tokens, j) is not None and tokens[j].is_keyword("AS"):
                    j += 1
                candidate = _at(tokens, j)
                if (candidate is not None and candidate.depth == depth
                        and (candidate.identifier() is not None
                             or (candidate.ttype in T.Keyword and not candidate.is_keyword(*_ALIAS_STOP)))):
                    alias = candidate.value.strip('"`[]').lower()
                    j += 1
                tables.append(_TableRef(ref.column, alias, ref.start + (2 if ref.qualifier else 0)))
                i = j
                continue
        i += 1
    return tables


def _check_tenant_scope(tokens: Sequence[_Token]) -> None:
    predicates = []
    for ref in _column_refs(tokens):
        if ref.column == TENANT_COLUMN:
            pred = _tenant_use(tokens, ref)
            if pred is not None and pred not in predicates:
                predicates.append(pred)

    anchored = [(pred, _anchor(tokens, pred)) for pred in predicates]
    anchored = [(pred, clause) for pred, clause in anchored if clause is not None]
    if not anchored:
        raise _Rejected(ErrorKind.MISSING_TENANT_SCOPE, f"no {TENANT_COLUMN} = {TENANT_PLACEHOLDER} predicate")

    for start, tok in enumerate(tokens):
        if not tok.is_keyword("SELECT"):
            continue
        end = _scope_end(tokens, start)
        tables = _scope_tables(tokens, start, end)
        scoped = [(pred, clause) for pred, clause in anchored
                  if start < clause < end and tokens[clause].depth == tok.depth]
        for table in tables:
            if not any(_covers(tokens, table, tables, pred, clause) for pred, clause in scoped):
                raise _Rejected(
                    ErrorKind.MISSING_TENANT_SCOPE,
                    f"table {table.name} is not scoped by {TENANT_COLUMN} = {TENANT_PLACEHOLDER}",
                )


def _covers(tokens, table: _TableRef, tables: Sequence[_TableRef], pred: _TenantPredicate, clause: int) -> bool:
    if pred.qualifier is None:
        matches = len(tables) == 1
    else:
        matches = pred.qualifier in (table.alias, table.name)
    if not matches:
        return False
    if tokens[clause].is_keyword("WHERE"):
        return True
    # an ON predicate scopes only the table that JOIN introduces
    joined = [t for t in tables if t.position < clause]
    return bool(joined) and joined[-1] == table


def _cap_row_limit(tokens: Sequence[_Token], row_cap: int) -> tuple[bool, list[tuple[int, int]]]:
    """
    Find the top-level LIMIT/FETCH and the spans whose count must become the
    row cap. Literal counts up to the cap are kept; ALL, NULL, placeholders and
    larger or negative counts are replaced; anything else is rejected.
    """
    found = False
    edits: list[tuple[int, int]] = []
    for k, tok in enumerate(tokens):
        if tok.depth != 0 or not ROW_LIMIT_KEYWORDS.intersection(tok.words()):
            continue
        found = True
        if tok.is_keyword("FETCH"):
            first = _at(tokens, k + 1)
            if first is None or not first.is_keyword("FIRST", "NEXT"):
                raise _Rejected(ErrorKind.NOT_READ_ONLY, "unsupported FETCH clause")
            count = _at(tokens, k + 2)
            if count is not None and count.is_keyword("ROW", "ROWS"):
                continue
            trailing_ok = _at(tokens, k + 3) is not None and tokens[k + 3].is_keyword("ROW", "ROWS")
        else:
            count = _at(tokens, k + 1)
            after = _at(tokens, k + 2)
            trailing_ok = after is None or after.is_keyword("OFFSET")
        if count is None or not trailing_ok:
            raise _Rejected(ErrorKind.NOT_READ_ONLY, "unsupported row limit expression")
        if count.ttype in T.Number.Integer and 0 <= int(count.value) <= row_cap:
            continue
        if count.ttype in T.Number.Integer or count.ttype in T.Name.Placeholder or count.is_keyword("ALL", "NULL"):
            edits.append((count.start, count.end))
            continue
        raise _Rejected(ErrorKind.NOT_READ_ONLY, f"unsupported row limit {count.value!r}")
    return found, edits


def validate_query(
    query: str,
    parameters: Sequence,
    store_id: str,
    row_cap: int = DEFAULT_ROW_CAP,
) -> ValidationVerdict:
    """Statically validate a generated query for the authenticated tenant."""
    if not query or not query.strip():
        return _reject(ErrorKind.NOT_READ_ONLY, "empty query")

    if _NON_ASCII_RE.search(query):
        return _reject(ErrorKind.NOT_READ_ONLY, "non-ASCII characters in query")

    tokens = _significant_tokens(query)
    if not tokens:
        return _reject(ErrorKind.NOT_READ_ONLY, "query contains only comments")

    if any(tok.ttype in T.Error for tok in tokens):
        return _reject(ErrorKind.NOT_READ_ONLY, "unparseable token in query")

    # 1. single allowed read verb
    first_words = tokens[0].words()
    if not first_words or first_words[0] != "SELECT":
        return _reject(ErrorKind.NOT_READ_ONLY, f"query starts with {tokens[0].value[:20]!r}")

    # 2. one statement, no mutating verbs anywhere
    if tokens[-1].is_punct(";"):
        tokens = tokens[:-1]
    if any(tok.is_punct(";") for tok in tokens):
        return _reject(ErrorKind.MULTIPLE_STATEMENTS, "statement separator inside query")

    words = [w for tok in tokens for w in tok.words()]
    denied = sorted(DENYLIST.intersection(words))
    if denied:
        return _reject(ErrorKind.NOT_READ_ONLY, f"forbidden keyword(s): {', '.join(denied)}")
    functions = sorted(DANGEROUS_FUNCTIONS.intersection(words))
    if functions:
        return _reject(ErrorKind.NOT_READ_ONLY, f"forbidden function(s): {', '.join(functions)}")

    # 3. tenant scope, derived from the query text and the bound values only
    compound = sorted(COMPOUND_OPERATORS.intersection(words))
    if compound:
        return _reject(ErrorKind.MISSING_TENANT_SCOPE, f"compound query: {', '.join(compound)}")
    try:
        _check_tenant_scope(tokens)
        has_limit, edits = _cap_row_limit(tokens, row_cap)
    except _Rejected as e:
        return _reject(e.kind, e.detail)
    if not parameters or parameters[0] != store_id:
        return _reject(ErrorKind.MISSING_TENANT_SCOPE, "tenant parameter does not match caller")

    # 4. row cap
    base = tokens[0].start
    normalized = query[base:tokens[-1].end]
    for start, end in reversed(edits):
        normalized = f"{normalized[:start - base]}{int(row_cap)}{normalized[end - base:]}"
    if not has_limit:
        normalized = f"{normalized} LIMIT {int(row_cap)}"

    return ValidationVerdict(accepted=True, normalized_query=normalized)
