# tabtk/utils.py
"""
Utility functions for tabtk.
"""

import datetime as dt
import itertools
import re
from typing import Any, Dict, Iterable, Iterator, List, Sequence, Tuple

from .defaults import settings

MIDNIGHT = dt.time(0, 0, 0)
# cache format strings for performance
_format_cache = None


class ParamStyle:
    """
    SQL parameter placeholder styles for different database drivers.

    Queries are written with ``:name`` placeholders and converted to the
    driver's style before execution:

    - QMARK: Question mark placeholders (?, ?) - SQLite, pyodbc
    - NUMERIC: Numeric placeholders (:1, :2)
    - NAMED: Named placeholders (:name, :email)
    - FORMAT: Printf-style (%s, %s) - pymssql
    - PYFORMAT: Python format (%(name)s) - psycopg2

    Example
    -------
    ::
        >>> ParamStyle.get_placeholder('qmark')
        '?'
        >>> ParamStyle.placeholders('numeric', 3)
        [':1', ':2', ':3']
    """
    QMARK = 'qmark'         # id = ?
    NUMERIC = 'numeric'     # id = :1
    NAMED = 'named'         # id = :id  also :1 for positional
    FORMAT = 'format'       # id = %s
    PYFORMAT = 'pyformat'   # id = %(id)s also %s for positional
    DEFAULT = QMARK

    @classmethod
    def values(cls):
        return [cls.QMARK, cls.NUMERIC, cls.NAMED, cls.FORMAT, cls.PYFORMAT]

    @classmethod
    def positional_styles(cls):
        """ Parameter styles where parameters must be in properly ordered tuple instead of dict"""
        return (cls.QMARK, cls.NUMERIC, cls.FORMAT)

    @classmethod
    def named_styles(cls):
        """ Parameter styles where parameters must be in dict instead of tuple"""
        return (cls.NAMED, cls.PYFORMAT)

    @classmethod
    def get_placeholder(cls, paramstyle: str) -> str:
        if paramstyle == cls.QMARK:
            return '?'
        elif paramstyle in (cls.FORMAT, cls.PYFORMAT):
            # pyformat adapters also accept %s for positional parameters
            return '%s'
        elif paramstyle in (cls.NUMERIC, cls.NAMED):
            # named adapters also accept :1 for positional parameters
            return ':1'
        return ''

    @classmethod
    def placeholders(cls, paramstyle: str, count: int) -> List[str]:
        """Positional placeholders for ``count`` bind values."""
        if paramstyle in (cls.NUMERIC, cls.NAMED):
            return [f':{i}' for i in range(1, count + 1)]
        return [cls.get_placeholder(paramstyle)] * count


def _build_format_strings():
    """Build format strings for datetime and date objects."""
    return {
        'date': settings.get('date_format', '%Y-%m-%d'),
        'datetime': settings.get('datetime_format', '%Y-%m-%d %H:%M:%S'),
        'datetime_tz': settings.get('datetime_format', '%Y-%m-%d %H:%M:%S') +
                       settings.get('tz_suffix', ' %z'),
        'timestamp': settings.get('timestamp_format', '%Y-%m-%d %H:%M:%S.%f'),
        'timestamp_tz': settings.get('timestamp_format', '%Y-%m-%d %H:%M:%S.%f') +
                        settings.get('tz_suffix', ' %z'),
        'time': settings.get('time_format', '%H:%M:%S'),
        'time_micro': settings.get('time_format', '%H:%M:%S') + '.%f',
        'null': settings.get('null_string', ''),
    }


def reset_format_cache():
    """Clear format cache to force rebuilding on next call."""
    global _format_cache
    _format_cache = None


def _get_format_strings():
    global _format_cache
    if _format_cache is None:
        _format_cache = _build_format_strings()
    return _format_cache


def to_string(obj: Any) -> str:
    """
    Convert a database value to its text representation.

    Dates use ``settings['date_format']``, datetimes at midnight are written as
    dates and None becomes ``settings['null_string']``.
    """
    fmts = _get_format_strings()
    if obj is None:
        return fmts['null']
    elif isinstance(obj, str):
        return obj
    elif isinstance(obj, dt.datetime):
        if obj.microsecond:
            return obj.strftime(fmts['timestamp_tz'] if obj.tzinfo else fmts['timestamp'])
        if obj.tzinfo:
            return obj.strftime(fmts['datetime_tz'])
        if obj.time() == MIDNIGHT:
            return obj.strftime(fmts['date'])
        return obj.strftime(fmts['datetime'])
    elif isinstance(obj, dt.date):
        return obj.strftime(fmts['date'])
    elif isinstance(obj, dt.time):
        return obj.strftime(fmts['time_micro'] if obj.microsecond else fmts['time'])
    elif isinstance(obj, bool):
        return '1' if obj else '0'
    elif isinstance(obj, (bytes, bytearray, memoryview)):
        return bytes(obj).hex()
    elif hasattr(obj, 'read'):
        # LOB objects
        return str(obj.read())
    return str(obj)


def process_sql_parameters(sql: str, paramstyle: str) -> Tuple[str, Tuple[str, ...]]:
    """
    Convert ``:name`` placeholders to the driver's paramstyle.

    Parameters:
        sql: The SQL query string containing named parameters in the format ':name'.
        paramstyle: The desired parameter style for the resulting SQL string.

    Returns:
        The processed SQL string and the parameter names in order of appearance.

    Raises:
        ValueError: If the provided paramstyle is not supported.
    """
    # (?<!:) keeps PostgreSQL ::casts intact
    pattern = r'(?<![:\w]):([A-Za-z_]\w*)'
    param_names = tuple(re.findall(pattern, sql))

    if paramstyle == ParamStyle.NAMED:
        return sql, param_names
    elif paramstyle == ParamStyle.PYFORMAT:
        return re.sub(pattern, r'%(\1)s', sql), param_names
    elif paramstyle == ParamStyle.QMARK:
        return re.sub(pattern, '?', sql), param_names
    elif paramstyle == ParamStyle.FORMAT:
        return re.sub(pattern, '%s', sql), param_names
    elif paramstyle == ParamStyle.NUMERIC:
        counter = itertools.count(1)
        return re.sub(pattern, lambda m: f':{next(counter)}', sql), param_names
    else:
        raise ValueError(f"Unsupported paramstyle: {paramstyle}")


def prepare_params(paramstyle: str, param_names: Sequence[str], bind_vars: Dict[str, Any]) -> Any:
    """
    Arrange named bind values the way the paramstyle expects.

    Returns a tuple in placeholder order for positional styles, otherwise a dict.

    Raises:
        KeyError: If a placeholder has no bind value.
    """
    missing = [name for name in param_names if name not in bind_vars]
    if missing:
        raise KeyError(f"No value supplied for parameters: {', '.join(sorted(set(missing)))}")
    if paramstyle in ParamStyle.positional_styles():
        return tuple(bind_vars[name] for name in param_names)
    return {name: bind_vars[name] for name in param_names}


def validate_identifier(identifier: str, max_length: int = 128) -> str:
    """
    Validate that an identifier is safe for use (even if it needs quoting).
    Returns the identifier if valid, raises ValueError if invalid.
    """
    if '.' in identifier:
        return '.'.join(validate_identifier(part, max_length) for part in identifier.split('.'))

    if not identifier:
        raise ValueError("Invalid identifier: cannot be empty")
    if len(identifier) > max_length:
        raise ValueError(f"Invalid identifier: exceeds max length of {max_length}")

    # characters/sequences that could enable injection or break SQL parsing
    dangerous_patterns = ['\x00', '\n', '\r', '"', ';', '\x1a', '--', '/*', '*/']
    for pattern in dangerous_patterns:
        if pattern in identifier:
            raise ValueError(f"Invalid identifier: contains dangerous pattern '{pattern}': {identifier}")

    if identifier != identifier.strip():
        raise ValueError(f"Invalid identifier: has leading/trailing spaces: {identifier}")

    return identifier


def identifier_needs_quoting(identifier: str) -> bool:
    """Check if identifier needs quoting."""
    return not re.match(r'^([a-z][a-z0-9_]*|[A-Z][A-Z0-9_]*)$', identifier)


def quote_identifier(identifier: str) -> str:
    """Quote identifier, handling qualified names by splitting on dots."""
    if '.' in identifier:
        return '.'.join(quote_identifier(part) for part in identifier.split('.'))
    if identifier_needs_quoting(identifier):
        return f'"{identifier}"'
    return identifier


def normalize_name(name: Any) -> str:
    """Lower case, trimmed, with runs of spaces and punctuation collapsed to '_'."""
    if name is None:
        return ''
    return re.sub(r'[^0-9a-z]+', '_', str(name).strip().lower()).strip('_')


def batch_iterable(iterable: Iterable[Any], batch_size: int) -> Iterator[List[Any]]:
    """
    Batch an iterable into chunks of specified size.

    Args:
        iterable: The iterable to batch
        batch_size: Size of each batch

    Yields:
        Lists of items up to batch_size length
    """
    iterator = iter(iterable)
    while True:
        batch = list(itertools.islice(iterator, batch_size))
        if not batch:
            break
        yield batch
