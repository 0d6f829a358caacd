import re

from .exceptions import InvalidArgumentError

_QUOTED_IDENTIFIER = re.compile(r'^"(?:[^"]|"")*"$')


def is_quoted_identifier(identifier: str) -> bool:
    return len(identifier) >= 2 and bool(_QUOTED_IDENTIFIER.match(identifier))


def quote_identifier(identifier: str) -> str:
    """
    Wrap an identifier in double quotes, doubling any embedded double quote.

        o"brien    =>  "o""brien"
        "o""brien" =>  "o""brien"   (already quoted, passed through)
    """
    if is_quoted_identifier(identifier):
        return identifier
    return '"' + identifier.replace('"', '""') + '"'


def unquote_identifier(identifier: str) -> str:
    if is_quoted_identifier(identifier):
        return identifier[1:-1].replace('""', '"')
    return identifier


def escape_single_quote(value: str) -> str:
    return value.replace("'", "''")


def escape_like_pattern(value: str) -> str:
    """
    Escape a value for an exact-match LIKE pattern used with ESCAPE '\\'.
    """
    value = value.replace("\\", "\\\\")
    value = value.replace("'", "''")
    value = value.replace("%", "\\%")
    value = value.replace("_", "\\_")
    return value


def _needs_quoting_in_id(part: str) -> bool:
    return "." in part or '"' in part


def table_id(database: str, schema: str, name: str) -> str:
    return ".".join(quote_identifier(p) if _needs_quoting_in_id(p) else p for p in (database, schema, name))


def _split_dotted(value: str) -> list[str]:
    parts = []
    current = []
    in_quotes = False
    i = 0
    while i < len(value):
        char = value[i]
        if char == '"':
            if in_quotes and i + 1 < len(value) and value[i + 1] == '"':
                current.append('""')
                i += 2
                continue
            in_quotes = not in_quotes
            current.append(char)
        elif char == "." and not in_quotes:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
        i += 1
    if in_quotes:
        raise InvalidArgumentError(f"Unterminated quoted identifier in {value}")
    parts.append("".join(current))
    return parts


def parse_table_id(value: str) -> tuple[str, str, str]:
    parts = _split_dotted(value)
    if len(parts) != 3:
        raise InvalidArgumentError(f"invalid table resource ID format: {value} (expected database.schema.table)")
    database, schema, name = (unquote_identifier(p) for p in parts)
    return database, schema, name
