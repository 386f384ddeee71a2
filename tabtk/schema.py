# tabtk/schema.py
"""
Destination table schema discovery and per-column value coercion.

The schema of a bulk load destination is read from the database before any
rows are sent, so values can be checked and converted to each column's
declared type on the way in.
"""

import datetime as dt
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Iterator, List, NamedTuple, Optional, Sequence

from dateutil import parser as date_parser

from .exceptions import NoResultSetError, SchemaMismatchError
from .utils import normalize_name, to_string, validate_identifier

logger = logging.getLogger(__name__)


class TypeFamily:
    """Groups of declared column types that share one coercion rule."""
    INTEGER = 'integer'
    DECIMAL = 'decimal'
    FLOAT = 'float'
    BOOLEAN = 'boolean'
    DATE = 'date'
    DATETIME = 'datetime'
    TIME = 'time'
    TEXT = 'text'
    BINARY = 'binary'
    UNKNOWN = None

    @classmethod
    def values(cls):
        return [cls.INTEGER, cls.DECIMAL, cls.FLOAT, cls.BOOLEAN, cls.DATE,
                cls.DATETIME, cls.TIME, cls.TEXT, cls.BINARY]


_TYPE_FAMILIES = {
    TypeFamily.INTEGER: ('int', 'integer', 'bigint', 'smallint', 'tinyint', 'mediumint', 'int2', 'int4',
                         'int8', 'serial', 'bigserial', 'smallserial'),
    TypeFamily.DECIMAL: ('decimal', 'numeric', 'money', 'smallmoney', 'number'),
    TypeFamily.FLOAT: ('float', 'real', 'double', 'double precision', 'float4', 'float8'),
    TypeFamily.BOOLEAN: ('bit', 'bool', 'boolean'),
    TypeFamily.DATE: ('date',),
    TypeFamily.DATETIME: ('datetime', 'datetime2', 'smalldatetime', 'datetimeoffset', 'timestamp',
                          'timestamptz', 'timestamp without time zone', 'timestamp with time zone'),
    TypeFamily.TIME: ('time', 'timetz', 'time without time zone', 'time with time zone'),
    TypeFamily.TEXT: ('char', 'varchar', 'nchar', 'nvarchar', 'text', 'ntext', 'character',
                      'character varying', 'varchar2', 'nvarchar2', 'clob', 'citext', 'xml',
                      'json', 'jsonb', 'uniqueidentifier', 'uuid', 'sysname'),
    TypeFamily.BINARY: ('binary', 'varbinary', 'image', 'bytea', 'blob', 'rowversion'),
}
_FAMILY_BY_TYPE = {type_name: family for family, names in _TYPE_FAMILIES.items() for type_name in names}


def type_family(data_type: Optional[str]) -> Optional[str]:
    """
    Map a declared column type to its TypeFamily.

    Types not in the known list fall back to SQLite's affinity rules. Anything
    still unrecognized returns None and its values pass through unchanged.
    """
    if not data_type:
        return TypeFamily.UNKNOWN
    base = re.sub(r'\(.*\)', '', data_type).strip().lower()
    if base in _FAMILY_BY_TYPE:
        return _FAMILY_BY_TYPE[base]
    # SQLite type affinity
    if 'int' in base:
        return TypeFamily.INTEGER
    if 'char' in base or 'clob' in base or 'text' in base:
        return TypeFamily.TEXT
    if 'blob' in base:
        return TypeFamily.BINARY
    if 'real' in base or 'floa' in base or 'doub' in base:
        return TypeFamily.FLOAT
    if 'bool' in base:
        return TypeFamily.BOOLEAN
    if 'num' in base or 'dec' in base:
        return TypeFamily.DECIMAL
    return TypeFamily.UNKNOWN


class ColumnInfo(NamedTuple):
    """One destination column: name, declared type, nullability and text length limit."""
    name: str
    data_type: Optional[str]
    nullable: bool = True
    max_length: Optional[int] = None

    @property
    def type_family(self) -> Optional[str]:
        return type_family(self.data_type)


class DestinationTableSchema:
    """
    Ordered column contract a bulk load must satisfy.

    Parameters
    ----------
    table : str
        Destination table name as given by the caller
    columns : sequence of ColumnInfo
        Columns in table order
    """

    def __init__(self, table: str, columns: Sequence[ColumnInfo]):
        self.table = table
        self.columns: List[ColumnInfo] = list(columns)

    def __iter__(self) -> Iterator[ColumnInfo]:
        return iter(self.columns)

    def __len__(self) -> int:
        return len(self.columns)

    def __repr__(self):
        return f"DestinationTableSchema({self.table!r}, columns={self.names!r})"

    @property
    def names(self) -> List[str]:
        return [col.name for col in self.columns]

    def find(self, name: str) -> Optional[ColumnInfo]:
        """Column matching ``name`` exactly, else ignoring case, spaces and punctuation."""
        for col in self.columns:
            if col.name == name:
                return col
        wanted = normalize_name(name)
        for col in self.columns:
            if normalize_name(col.name) == wanted:
                return col
        return None


def _split_table_name(table: str):
    parts = [p.strip('[]"`') for p in table.split('.')]
    if len(parts) == 1:
        return None, parts[0]
    return parts[-2], parts[-1]


def _parse_length(data_type: str) -> Optional[int]:
    match = re.search(r'\(\s*(\d+)\s*\)', data_type or '')
    return int(match.group(1)) if match else None


def _sqlite_columns(executor, schema: Optional[str], table_name: str) -> List[ColumnInfo]:
    validate_identifier(table_name)
    prefix = f'"{validate_identifier(schema)}".' if schema else ''
    try:
        with executor.execute_query(f'PRAGMA {prefix}table_info("{table_name}")') as cursor:
            rows = cursor.fetchall()
    except NoResultSetError:
        return []
    # cid, name, type, notnull, dflt_value, pk
    return [ColumnInfo(row[1], row[2] or None, not row[3], _parse_length(row[2])) for row in rows]


def _information_schema_columns(executor, schema: Optional[str], table_name: str) -> List[ColumnInfo]:
    sql = ("SELECT column_name, data_type, is_nullable, character_maximum_length "
           "FROM information_schema.columns WHERE table_name = :table_name")
    params = {'table_name': table_name}
    if schema:
        sql += " AND table_schema = :table_schema"
        params['table_schema'] = schema
    sql += " ORDER BY ordinal_position"
    with executor.execute_query(sql, params) as cursor:
        rows = cursor.fetchall()
    return [
        ColumnInfo(row[0], row[1], str(row[2]).upper() == 'YES',
                   int(row[3]) if row[3] is not None else None)
        for row in rows
    ]


def fetch_table_schema(executor, table: str) -> DestinationTableSchema:
    """
    Discover the ordered columns of ``table`` through ``executor``'s primary connection.

    Raises
    ------
    SchemaMismatchError
        If the table does not exist or has no visible columns
    """
    schema, table_name = _split_table_name(table)
    if executor.manager.server_type == 'sqlite':
        columns = _sqlite_columns(executor, schema, table_name)
    else:
        columns = _information_schema_columns(executor, schema, table_name)
        if not columns and table_name != table_name.lower():
            # unquoted identifiers are folded to lower case on PostgreSQL
            columns = _information_schema_columns(executor, schema and schema.lower(), table_name.lower())
    if not columns:
        raise SchemaMismatchError(None, table, 'table not found')
    logger.debug(f"Table {table} has columns: {', '.join(c.name for c in columns)}")
    return DestinationTableSchema(table, columns)


_TRUE_STRINGS = {'1', 'true', 't', 'yes', 'y'}
_FALSE_STRINGS = {'0', 'false', 'f', 'no', 'n'}


def _to_int(value):
    if isinstance(value, int):
        return int(value)
    if isinstance(value, str):
        value = value.strip()
        try:
            return int(value)
        except ValueError:
            value = _to_decimal(value)
    if isinstance(value, (float, Decimal)):
        if value != int(value):
            raise ValueError('fractional value')
        return int(value)
    raise TypeError(f'unsupported type {type(value).__name__}')


def _to_decimal(value):
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError('not a number')
        if not result.is_finite():
            raise ValueError('not a finite number')
        return result
    raise TypeError(f'unsupported type {type(value).__name__}')


def _to_float(value):
    if isinstance(value, (str, int, float, Decimal)):
        return float(value.strip() if isinstance(value, str) else value)
    raise TypeError(f'unsupported type {type(value).__name__}')


def _to_bool(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, Decimal, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise ValueError('not a boolean')


# Two parses with defaults that differ in every date field and in the hour
# show which parts the text actually supplied.
_PARSE_DEFAULT = dt.datetime(1900, 1, 1)
_ALT_DEFAULT = dt.datetime(1904, 2, 2, 1)


def _parse_date_string(text: str):
    """Parse ``text`` with dateutil. Returns (value, has_date, has_time)."""
    text = text.strip()
    value = date_parser.parse(text, default=_PARSE_DEFAULT)
    other = date_parser.parse(text, default=_ALT_DEFAULT)
    return value, value.date() == other.date(), value.hour == other.hour


def _to_datetime(value):
    if isinstance(value, dt.datetime):
        return value
    if isinstance(value, dt.date):
        return dt.datetime.combine(value, dt.time())
    if isinstance(value, str):
        parsed, has_date, _ = _parse_date_string(value)
        if not has_date:
            raise ValueError('incomplete date')
        return parsed
    raise TypeError(f'unsupported type {type(value).__name__}')


def _to_date(value):
    if isinstance(value, str):
        value = _to_datetime(value)
    if isinstance(value, dt.datetime):
        if value.time() != dt.time():
            raise ValueError('has a time of day')
        return value.date()
    if isinstance(value, dt.date):
        return value
    raise TypeError(f'unsupported type {type(value).__name__}')


def _to_time(value):
    if isinstance(value, dt.time):
        return value
    if isinstance(value, dt.datetime):
        return value.timetz()
    if isinstance(value, str):
        parsed, _, has_time = _parse_date_string(value)
        if not has_time:
            raise ValueError('no time of day')
        return parsed.timetz()
    raise TypeError(f'unsupported type {type(value).__name__}')


def _to_binary(value):
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f'unsupported type {type(value).__name__}')


_COERCERS = {
    TypeFamily.INTEGER: _to_int,
    TypeFamily.DECIMAL: _to_decimal,
    TypeFamily.FLOAT: _to_float,
    TypeFamily.BOOLEAN: _to_bool,
    TypeFamily.DATE: _to_date,
    TypeFamily.DATETIME: _to_datetime,
    TypeFamily.TIME: _to_time,
    TypeFamily.BINARY: _to_binary,
}


def coerce_value(value: Any, column: ColumnInfo) -> Any:
    """
    Convert ``value`` to ``column``'s declared type.

    Blank strings are NULL for every non-text column. Values of unrecognized
    types pass through unchanged.

    Raises
    ------
    ValueError, TypeError, OverflowError
        If the value cannot be represented in the column. Date parsing errors
        from dateutil are ValueError subclasses.
    """
    family = column.type_family
    if isinstance(value, str) and family not in (TypeFamily.TEXT, TypeFamily.UNKNOWN) and not value.strip():
        value = None
    if value is None:
        if not column.nullable:
            raise ValueError('NULL not allowed')
        return None

    if family == TypeFamily.TEXT:
        text = to_string(value)
        if column.max_length and column.max_length > 0 and len(text) > column.max_length:
            raise ValueError(f'longer than {column.max_length} characters')
        return text
    coercer = _COERCERS.get(family)
    if coercer is None:
        return value
    return coercer(value)
