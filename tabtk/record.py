# tabtk/record.py
"""
Record class for result set and file rows.
"""

from typing import Any, Iterator, List, Tuple, Union

from .utils import to_string


class Record(list):
    """
    Lightweight row object that behaves like a list, a dict and an object.

    Record extends list, so positional access, slicing, unpacking and iteration
    over values work as they would on a plain row. Field names are held on the
    class (``_fields``), and a cursor or reader creates one Record subclass per
    result shape, which keeps each row as cheap as a list.

    Access Patterns
    ---------------
    * **Dictionary-style**: ``row['column_name']`` and ``row.get('column_name')``
    * **Attribute access**: ``row.column_name``
    * **Integer index**: ``row[3]`` and slices
    * **Iteration**: ``for value in row`` yields values in column order

    Example
    -------
    ::

        cursor = engine.execute_query("SELECT id, name FROM airbenders WHERE id = :id", {'id': 1})
        row = cursor.fetchone()

        row['name']      # 'Aang'
        row.name         # 'Aang'
        row[1]           # 'Aang'
        id_, name = row  # unpack like a tuple
        row.to_dict()    # {'id': 1, 'name': 'Aang'}
    """

    __slots__ = ()
    _fields: List[str] = []

    def __init__(self, *values: Any) -> None:
        super().__init__(values)

    def __getitem__(self, key: Union[int, str, slice]) -> Any:
        if isinstance(key, str):
            try:
                return super().__getitem__(self._fields.index(key))
            except ValueError:
                raise KeyError(f"Column '{key}' not found")
        return super().__getitem__(key)

    def __setitem__(self, key: Union[int, str, slice], value: Any) -> None:
        if isinstance(key, str):
            try:
                key = self._fields.index(key)
            except ValueError:
                raise KeyError(f"Column '{key}' not found")
        super().__setitem__(key, value)

    def __getattr__(self, name: str) -> Any:
        # only called when normal attribute lookup fails
        if name in self._fields:
            return self[name]
        raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{name}'")

    def __contains__(self, key: object) -> bool:
        if isinstance(key, str):
            return key in self._fields
        return super().__contains__(key)

    @classmethod
    def set_columns(cls, columns: List[str]) -> None:
        """Set the column names for this Record class."""
        cls._fields = list(columns)

    def keys(self) -> List[str]:
        return list(self._fields)

    def values(self) -> Tuple[Any, ...]:
        return tuple(super().__iter__())

    def items(self) -> Iterator[Tuple[str, Any]]:
        return zip(self._fields, super().__iter__())

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return self[key]
        except (KeyError, IndexError):
            return default

    def to_dict(self) -> dict:
        return dict(self.items())

    def __repr__(self) -> str:
        values = ", ".join(repr(v) for v in super().__iter__())
        return f"{self.__class__.__name__}({values})"

    def __str__(self) -> str:
        items = ", ".join(f"{k!r}: {v!r}" for k, v in self.items())
        return f"{self.__class__.__name__}({items})"

    def pprint(self) -> None:
        """Pretty-print the record with aligned columns."""
        if not self._fields:
            print("<Empty Record>")
            return
        width = max(len(k) for k in self._fields)
        for key, value in self.items():
            print(f"{key:<{width}} : {to_string(value)}")


def record_class(columns: List[str], name: str = 'Record') -> type:
    """Create a Record subclass bound to ``columns``."""
    return type(name, (Record,), {'__slots__': (), '_fields': list(columns)})
