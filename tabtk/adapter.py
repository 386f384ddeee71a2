# tabtk/adapter.py
"""
Row adapters shape source rows into destination table order for bulk loads.
"""

import logging
from typing import Any, Iterable, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

from .exceptions import SchemaMismatchError, TypeCoercionError
from .schema import ColumnInfo, DestinationTableSchema, coerce_value
from .utils import normalize_name

logger = logging.getLogger(__name__)


class ColumnMapping(NamedTuple):
    """Source field (name or zero-based ordinal) feeding a destination column."""
    source: Union[str, int]
    destination: str


def _as_mappings(column_mappings) -> Optional[List[ColumnMapping]]:
    if column_mappings is None:
        return None
    if isinstance(column_mappings, Mapping):
        return [ColumnMapping(src, dest) for src, dest in column_mappings.items()]
    return [m if isinstance(m, ColumnMapping) else ColumnMapping(*m) for m in column_mappings]


def _find_field(fields: Sequence[str], name: str) -> Optional[int]:
    """Index of ``name`` in ``fields``, exact match first, then ignoring case and punctuation."""
    if name in fields:
        return list(fields).index(name)
    wanted = normalize_name(name)
    for i, field in enumerate(fields):
        if normalize_name(field) == wanted:
            return i
    return None


def _row_fields(row) -> Optional[List[str]]:
    fields = getattr(row, '_fields', None)
    if fields:
        return list(fields)
    if isinstance(row, Mapping):
        return [str(k) for k in row.keys()]
    return None


def _row_values(row) -> Sequence[Any]:
    if isinstance(row, Mapping):
        return list(row.values())
    return row


class RowAdapter:
    """
    Lazily reshapes source rows into tuples in destination column order.

    Field resolution happens once, on the first row. Values are passed through
    unchanged; see :class:`ValidatingRowAdapter` for type checking.

    Parameters
    ----------
    source : iterable
        RowSource, Reader or any iterable of Records, dicts or sequences
    schema : DestinationTableSchema, optional
        Destination contract. Can also be bound later with :meth:`bind`.
    column_mappings : list of ColumnMapping, (source, destination) pairs or dict, optional
        Explicit mapping. Replaces name matching completely, and only the
        mapped destination columns are loaded.
    positional : bool, optional
        True matches source fields to destination columns by position, False
        by name. None tries names and falls back to position when any column
        has no source field of the same name.
    """

    def __init__(self,
                 source: Iterable,
                 schema: Optional[DestinationTableSchema] = None,
                 column_mappings=None,
                 positional: Optional[bool] = None):
        self.source = source
        self.column_mappings = _as_mappings(column_mappings)
        self.positional = positional
        self.schema: Optional[DestinationTableSchema] = None
        self._target: List[ColumnInfo] = []
        self._plan: Optional[List[Optional[int]]] = None
        self._rows: Optional[Iterator] = None
        self._row_index = 0
        if schema is not None:
            self.bind(schema)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __iter__(self):
        return self

    def __next__(self) -> Tuple[Any, ...]:
        if self.schema is None:
            raise ValueError("No destination schema bound. Call bind() first.")
        if self._rows is None:
            self._rows = iter(self.source)
        row = next(self._rows)
        self._row_index += 1
        if self._plan is None:
            self._plan = self._resolve(_row_fields(row))
        values = _row_values(row)
        width = len(values)
        picked = [values[i] if i is not None and i < width else None for i in self._plan]
        return self._convert(picked)

    @property
    def row_index(self) -> int:
        """1-based index of the last row read."""
        return self._row_index

    @property
    def target_columns(self) -> List[ColumnInfo]:
        return list(self._target)

    @property
    def column_names(self) -> List[str]:
        return [col.name for col in self._target]

    def bind(self, schema: DestinationTableSchema) -> 'RowAdapter':
        """
        Bind the destination schema and work out the target columns.

        Raises
        ------
        SchemaMismatchError
            If a mapping names a destination column the table does not have
        """
        if self.column_mappings:
            wanted = set()
            for mapping in self.column_mappings:
                column = schema.find(mapping.destination)
                if column is None:
                    raise SchemaMismatchError(mapping.destination, schema.table, 'not a column of the destination table')
                wanted.add(column.name)
            self._target = [col for col in schema if col.name in wanted]
        else:
            self._target = list(schema)
        self.schema = schema
        self._plan = None
        return self

    def _resolve(self, fields: Optional[List[str]]) -> List[Optional[int]]:
        table = self.schema.table
        if self.column_mappings:
            by_dest = {self.schema.find(m.destination).name: m.source for m in self.column_mappings}
            plan = []
            for column in self._target:
                src = by_dest[column.name]
                if isinstance(src, int):
                    if fields is not None and src >= len(fields):
                        raise SchemaMismatchError(column.name, table, f'source field #{src} does not exist')
                    plan.append(src)
                    continue
                idx = _find_field(fields, src) if fields is not None else None
                if idx is None:
                    raise SchemaMismatchError(column.name, table, f"source field '{src}' not found")
                plan.append(idx)
            return plan

        if self.positional is not True and fields is not None:
            plan = [_find_field(fields, col.name) for col in self._target]
            missing = [col.name for col, idx in zip(self._target, plan) if idx is None]
            if not missing:
                return plan
            if self.positional is False:
                raise SchemaMismatchError(missing[0], table)
            logger.info(f"Source fields do not match the columns of {table} by name, mapping by position")
        elif self.positional is False:
            raise SchemaMismatchError(self._target[0].name if self._target else None, table,
                                      'source rows have no field names')
        return list(range(len(self._target)))

    def _convert(self, values: List[Any]) -> Tuple[Any, ...]:
        return tuple(values)

    def close(self) -> None:
        """Close the underlying source if it can be closed."""
        if hasattr(self.source, 'close'):
            self.source.close()


class ValidatingRowAdapter(RowAdapter):
    """
    Row adapter that converts every value to its destination column's type.

    Matches source fields to columns by name unless told otherwise. A value that
    cannot be converted stops the load with a TypeCoercionError naming the row,
    column, value and target type.

    Example
    -------
    ::

        schema = DestinationTableSchema('benders', [ColumnInfo('id', 'int', nullable=False),
                                                    ColumnInfo('name', 'varchar(20)')])
        rows = [{'id': '5', 'name': 'Toph'}]
        list(ValidatingRowAdapter(rows, schema))    # [(5, 'Toph')]
    """

    def __init__(self,
                 source: Iterable,
                 schema: Optional[DestinationTableSchema] = None,
                 column_mappings=None,
                 positional: Optional[bool] = False):
        super().__init__(source, schema, column_mappings, positional)

    def _convert(self, values: List[Any]) -> Tuple[Any, ...]:
        converted = []
        for column, value in zip(self._target, values):
            try:
                converted.append(coerce_value(value, column))
            except (ValueError, TypeError, ArithmeticError) as e:
                raise TypeCoercionError(self._row_index, column.name, value,
                                        column.data_type or 'unknown', str(e)) from e
        return tuple(converted)
