"""
Database - Schema Model.

============================================================
RESPONSIBILITY
============================================================
The shared schema model other modules extend at startup.

- Mapping of schema object name -> Table or mapped class
- Backed by a single SQLAlchemy MetaData, which is what
  schema synchronization creates or drops
- Frozen after the extension hook; later writes are errors

============================================================
USAGE (inside a schema extension participant)
============================================================
    def extend_schema(handle, model):
        model.define(
            "users",
            Column("id", Integer, primary_key=True),
            Column("name", String(100), nullable=False),
        )

    or, declaratively:

    class Account(model.base):
        __tablename__ = "accounts"
        id = Column(Integer, primary_key=True)

    model.add("Account", Account)

Table names are used verbatim (no pluralization) and no
timestamp columns are added implicitly.

============================================================
"""

from collections.abc import Mapping
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import MetaData, Table
from sqlalchemy.orm import declarative_base

from core.exceptions import SchemaModelError


class SchemaModel(Mapping):
    """Named schema objects backed by one MetaData."""

    def __init__(self, metadata: Optional[MetaData] = None):
        self.metadata = metadata if metadata is not None else MetaData()
        self._objects: Dict[str, Any] = {}
        self._frozen = False
        self._base = None

    # --------------------------------------------------------
    # MAPPING INTERFACE
    # --------------------------------------------------------

    def __getitem__(self, name: str) -> Any:
        if name in self._objects:
            return self._objects[name]
        return self.metadata.tables[name]

    def __iter__(self) -> Iterator[str]:
        yield from self._objects
        named_tables = {self._table_of(obj).name for obj in self._objects.values()}
        for table_name in self.metadata.tables:
            if table_name not in self._objects and table_name not in named_tables:
                yield table_name

    def __len__(self) -> int:
        return sum(1 for _ in self)

    # --------------------------------------------------------
    # DEFINITION
    # --------------------------------------------------------

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def base(self):
        """Declarative base whose classes land in this model's metadata."""
        if self._base is None:
            self._base = declarative_base(metadata=self.metadata)
        return self._base

    def define(self, name: str, *columns, **kwargs) -> Table:
        """Define a table and register it under its own name."""
        self._check_writable(name)
        if name in self.metadata.tables:
            raise SchemaModelError(f"schema object '{name}' is already defined")
        table = Table(name, self.metadata, *columns, **kwargs)
        self._objects[name] = table
        return table

    def add(self, name: str, obj: Any) -> Any:
        """
        Register an existing Table or mapped class under a name.

        Raises:
            SchemaModelError: Frozen model, duplicate name, or an object
                whose table lives in a different MetaData
        """
        self._check_writable(name)
        if name in self._objects:
            raise SchemaModelError(f"schema object '{name}' is already defined")
        table = self._table_of(obj)
        if table is None:
            raise SchemaModelError(
                f"schema object '{name}' must be a Table or a mapped class"
            )
        if table.metadata is not self.metadata:
            raise SchemaModelError(
                f"schema object '{name}' belongs to a different MetaData; "
                f"define it with this model's metadata or base"
            )
        self._objects[name] = obj
        return obj

    def __setitem__(self, name: str, obj: Any) -> None:
        self.add(name, obj)

    def __delitem__(self, name: str) -> None:
        raise SchemaModelError(f"schema object '{name}' cannot be removed")

    def freeze(self) -> None:
        self._frozen = True

    @property
    def tables(self) -> List[Table]:
        """All tables in dependency order."""
        return list(self.metadata.sorted_tables)

    def _check_writable(self, name: str) -> None:
        if self._frozen:
            raise SchemaModelError(
                f"schema model is read-only after schema extension; cannot add '{name}'"
            )

    @staticmethod
    def _table_of(obj: Any) -> Optional[Table]:
        if isinstance(obj, Table):
            return obj
        table = getattr(obj, "__table__", None)
        return table if isinstance(table, Table) else None


__all__ = ["SchemaModel"]
