"""
Render a parameterized command back into literal SQL.

The output is for logs and error messages only; it is never executed.
"""
import re
from collections.abc import Iterable
from typing import Any

from fluentdb.types import QUOTED_DB_TYPES, CommandType, DbType, infer_db_type

__all__ = ['render_command', 'render_literal', 'to_command_string']


def render_literal(value: Any, db_type: DbType | None = None) -> str:
    """Render one parameter value as a SQL literal.

    None renders as NULL. String, date/time and guid typed values are quoted;
    numeric and boolean values are not.
    """
    if value is None:
        return 'NULL'

    if db_type is None or db_type is DbType.OBJECT:
        db_type = infer_db_type(value)

    if db_type is DbType.BOOLEAN and isinstance(value, bool):
        text = 'TRUE' if value else 'FALSE'
    elif isinstance(value, bytes | bytearray | memoryview):
        text = '0x' + bytes(value).hex()
    else:
        text = str(value)

    if db_type in QUOTED_DB_TYPES:
        return "'" + text.replace("'", "''") + "'"
    return text


def render_command(text: str | None, parameters: Iterable[Any],
                   command_type: CommandType = CommandType.TEXT) -> str | None:
    """Substitute every bound parameter name in `text` with its literal value.

    Names are matched longest first in a single pass, so `@id` never
    matches inside `@id10` and substituted values are never rescanned.

    >>> from types import SimpleNamespace as P
    >>> render_command('WHERE a=@id AND b=@id10',
    ...                [P(name='@id', value=7, db_type=None),
    ...                 P(name='@id10', value=42, db_type=None)])
    'WHERE a=7 AND b=42'

    Stored procedures have no placeholders in their text, so their
    parameters are appended as `name=value` pairs.
    """
    if text is None:
        return None

    parameters = [p for p in parameters if p.name]
    literals = {p.name: render_literal(p.value, p.db_type) for p in parameters}

    if command_type is CommandType.STORED_PROCEDURE:
        if not parameters:
            return text
        args = ', '.join(f'{p.name}={literals[p.name]}' for p in parameters)
        return f'{text} {args}'

    if not literals:
        return text

    names = sorted(literals, key=len, reverse=True)
    pattern = re.compile('|'.join(re.escape(name) for name in names))
    return pattern.sub(lambda m: literals[m.group(0)], text)


def to_command_string(command: Any) -> str | None:
    """Render a driver command object; None when there is no command.
    """
    if command is None:
        return None
    return render_command(command.text, command.parameters, command.command_type)


if __name__ == '__main__':
    __import__('doctest').testmod(optionflags=4 | 8 | 32)
