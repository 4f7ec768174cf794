"""
Named parameter compilation.

Commands are written with provider-prefixed parameter names (`@id`,
`:name`). DB-API drivers each accept one or two paramstyles, so before
execution the text is rewritten for the driver in a single pass:

    SQL + bound names → Tokenize → Rewrite placeholders → (sql, params)

Parameter names inside string literals, quoted identifiers and comments are
left alone, and a name only matches when it is not immediately followed by
another identifier character, so `@id` never matches inside `@id10`.
"""
import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

__all__ = [
    'PARAMSTYLES',
    'CompiledQuery',
    'tokenize_sql',
    'compile_parameters',
    'strip_prefix',
]

PARAMSTYLES = ('qmark', 'numeric', 'named', 'format', 'pyformat')


class TokenType(Enum):
    """Token types identified during SQL parsing."""
    SQL_TEXT = auto()
    STRING_LITERAL = auto()
    QUOTED_IDENTIFIER = auto()
    COMMENT = auto()
    PARAMETER = auto()


@dataclass(slots=True)
class Token:
    """Token from SQL parsing."""
    type: TokenType
    text: str


@dataclass(slots=True)
class CompiledQuery:
    """Driver-ready SQL and its arguments (None when nothing is bound)."""
    sql: str
    params: tuple | dict | None


_LEXICAL = r"""
    (?P<string>'(?:[^']|'')*')
    |(?P<identifier>"(?:[^"]|"")*")
    |(?P<comment>--[^\n]*|/\*.*?\*/)
"""


def _tokenizer(names: list[str]) -> re.Pattern:
    pattern = _LEXICAL
    if names:
        alternatives = '|'.join(re.escape(n) for n in sorted(names, key=len, reverse=True))
        pattern += rf'|(?P<param>(?:{alternatives})(?![\w$]))'
    return re.compile(pattern, re.VERBOSE | re.DOTALL)


def tokenize_sql(sql: str, names: list[str] | tuple[str, ...] = ()) -> list[Token]:
    """Split SQL into text, literal, comment and parameter tokens.

    Parameters
        sql: SQL text with prefixed parameter names
        names: Parameter names (prefix included) to recognise

    Returns
        List of tokens preserving all SQL text
    """
    tokens = []
    last_end = 0

    for match in _tokenizer(list(names)).finditer(sql):
        start, end = match.span()
        if start > last_end:
            tokens.append(Token(TokenType.SQL_TEXT, sql[last_end:start]))

        if match.group('string'):
            ttype = TokenType.STRING_LITERAL
        elif match.group('identifier'):
            ttype = TokenType.QUOTED_IDENTIFIER
        elif match.group('comment'):
            ttype = TokenType.COMMENT
        else:
            ttype = TokenType.PARAMETER

        tokens.append(Token(ttype, match.group(0)))
        last_end = end

    if last_end < len(sql):
        tokens.append(Token(TokenType.SQL_TEXT, sql[last_end:]))

    return tokens


def strip_prefix(name: str, prefix: str) -> str:
    """Return the parameter name without its provider prefix."""
    if prefix and name.startswith(prefix):
        return name[len(prefix):]
    return name


def compile_parameters(sql: str, values: dict[str, Any], paramstyle: str,
                       prefix: str = '') -> CompiledQuery:
    """Rewrite prefixed parameter names into the driver's paramstyle.

    Parameters
        sql: Command text, e.g. ``select * from t where a = @a``
        values: Bound values keyed by the prefixed name (``{'@a': 1}``)
        paramstyle: PEP-249 paramstyle of the driver
        prefix: Provider parameter prefix, stripped for named styles

    Returns
        CompiledQuery with positional (tuple) or named (dict) params. Names
        used twice are passed twice for positional styles.

    >>> compile_parameters('a=@a and b=@ab and c=@a', {'@a': 1, '@ab': 2}, 'qmark', '@')
    CompiledQuery(sql='a=? and b=? and c=?', params=(1, 2, 1))
    >>> compile_parameters("a=@a and b='@a'", {'@a': 1}, 'pyformat', '@')
    CompiledQuery(sql="a=%(a)s and b='@a'", params={'a': 1})
    """
    if paramstyle not in PARAMSTYLES:
        raise ValueError(f'Unsupported paramstyle: {paramstyle}. Available: {list(PARAMSTYLES)}')

    tokens = tokenize_sql(sql, list(values))
    if not any(t.type == TokenType.PARAMETER for t in tokens):
        return CompiledQuery(sql, None)

    escape_percent = paramstyle in {'format', 'pyformat'}
    positional: list[Any] = []
    named: dict[str, Any] = {}
    numbers: dict[str, int] = {}
    result = []

    for token in tokens:
        if token.type != TokenType.PARAMETER:
            result.append(token.text.replace('%', '%%') if escape_percent else token.text)
            continue

        value = values[token.text]
        bare = strip_prefix(token.text, prefix)
        if paramstyle == 'qmark':
            result.append('?')
            positional.append(value)
        elif paramstyle == 'format':
            result.append('%s')
            positional.append(value)
        elif paramstyle == 'numeric':
            if token.text not in numbers:
                positional.append(value)
                numbers[token.text] = len(positional)
            result.append(f':{numbers[token.text]}')
        elif paramstyle == 'named':
            result.append(f':{bare}')
            named[bare] = value
        else:
            result.append(f'%({bare})s')
            named[bare] = value

    params = named if paramstyle in {'named', 'pyformat'} else tuple(positional)
    return CompiledQuery(''.join(result), params)


if __name__ == '__main__':
    __import__('doctest').testmod(optionflags=4 | 8 | 32)
