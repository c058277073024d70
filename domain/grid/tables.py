"""Grid Bounded Context - Sparse tables keyed by (tile id, cell id).

Column-oriented value objects: one read-only numpy array per field, a fixed
record type per table kind for row iteration, and a duplicate-key check at
construction time. Dense per-tile rasters live with the prior engine; moving
between the two representations goes through to_raster, which is
bounds-checked against the Grid.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any, ClassVar, TypeVar

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, model_validator

from domain.errors import ConfigurationError
from domain.grid.value_objects import Grid

TableT = TypeVar("TableT", bound="KeyedTable")


def duplicate_keys(tile_id: NDArray[np.int64], cell_id: NDArray[np.str_]) -> list[tuple[int, str]]:
    """Return the (tile, cell) keys occurring more than once."""
    if tile_id.size < 2:
        return []
    order = np.lexsort((cell_id, tile_id))
    t = tile_id[order]
    c = cell_id[order]
    dup = (t[1:] == t[:-1]) & (c[1:] == c[:-1])
    return [(int(ti), str(ci)) for ti, ci in zip(t[1:][dup], c[1:][dup])]


def group_sum(
    keys: NDArray[Any], values: NDArray[np.float64]
) -> tuple[NDArray[Any], NDArray[np.float64], NDArray[np.intp]]:
    """Sum values per distinct key.

    Returns:
        (unique_keys, sums, inverse) where sums[inverse] broadcasts each
        group's total back onto its rows
    """
    unique, inverse = np.unique(keys, return_inverse=True)
    inverse = inverse.ravel()
    sums = np.bincount(inverse, weights=values, minlength=unique.size)
    return unique, sums, inverse


def _frozen(arr: NDArray[Any]) -> NDArray[Any]:
    owned = np.array(arr, copy=True)
    owned.flags.writeable = False
    return owned


class KeyedTable(BaseModel):
    """Base for SignalTable, LikelihoodTable and PosteriorTable.

    Subclasses declare their float columns in `value_columns` and the record
    type yielded by rows() in `row_type`.
    """

    tile_id: NDArray[np.int64]
    cell_id: NDArray[np.str_]

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    value_columns: ClassVar[tuple[str, ...]] = ()
    row_type: ClassVar[type[BaseModel]]

    @model_validator(mode="before")
    @classmethod
    def _coerce_columns(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["tile_id"] = np.asarray(data.get("tile_id", ()), dtype=np.int64)
        data["cell_id"] = np.asarray(data.get("cell_id", ()), dtype=np.str_)
        for name in cls.value_columns:
            data[name] = np.asarray(data.get(name, ()), dtype=np.float64)
        return data

    @model_validator(mode="after")
    def validate_columns(self) -> "KeyedTable":
        n = self.tile_id.shape[0] if self.tile_id.ndim == 1 else -1
        for name in ("tile_id", "cell_id", *self.value_columns):
            column = getattr(self, name)
            if column.ndim != 1 or column.shape[0] != n:
                raise ValueError(
                    f"Column {name} has shape {column.shape}, expected ({n},)"
                )
        for name in self.value_columns:
            if not np.isfinite(getattr(self, name)).all():
                raise ValueError(f"Column {name} contains NaN or infinite values")
        if n and self.tile_id.min() < 0:
            raise ValueError("Negative tile id")
        dups = duplicate_keys(self.tile_id, self.cell_id)
        if dups:
            raise ValueError(f"Duplicate (tile_id, cell_id) keys: {dups[:5]}")

        for name in ("tile_id", "cell_id", *self.value_columns):
            object.__setattr__(self, name, _frozen(getattr(self, name)))
        return self

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------
    def __len__(self) -> int:
        return int(self.tile_id.shape[0])

    def columns(self) -> dict[str, NDArray[Any]]:
        """Column name -> read-only array, in declaration order."""
        return {name: getattr(self, name) for name in ("tile_id", "cell_id", *self.value_columns)}

    def rows(self) -> Iterator[BaseModel]:
        """Yield one typed record per row."""
        values = [getattr(self, name) for name in self.value_columns]
        for i in range(len(self)):
            yield self.row_type(
                tile_id=int(self.tile_id[i]),
                cell_id=str(self.cell_id[i]),
                **{name: float(col[i]) for name, col in zip(self.value_columns, values)},
            )

    def cell_ids(self) -> tuple[str, ...]:
        """Distinct cell ids, sorted."""
        return tuple(str(c) for c in np.unique(self.cell_id))

    def tile_ids(self) -> NDArray[np.int64]:
        """Distinct tile ids, sorted."""
        return np.unique(self.tile_id)

    def to_raster(self, grid: Grid, cell_id: str, column: str | None = None) -> NDArray[np.float64]:
        """Dense per-tile array of one cell's values (0 where the cell has no row).

        Raises:
            ConfigurationError: If a tile id falls outside the grid, or the
                column is unknown
        """
        column = column or self.value_columns[-1]
        if column not in self.value_columns:
            raise ConfigurationError(f"Unknown column {column!r}")
        if len(self) and int(self.tile_id.max()) >= grid.n_tiles:
            raise ConfigurationError(
                f"Tile id {int(self.tile_id.max())} outside grid with {grid.n_tiles} tiles"
            )
        mask = self.cell_id == cell_id
        dense = np.zeros(grid.n_tiles, dtype=np.float64)
        dense[self.tile_id[mask]] = getattr(self, column)[mask]
        return dense

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------
    @classmethod
    def concat(cls: type[TableT], tables: Iterable[TableT], **fields: Any) -> TableT:
        """Concatenate row sets; duplicate keys fail validation."""
        tables = list(tables)
        names = ("tile_id", "cell_id", *cls.value_columns)
        if not tables:
            return cls(**{name: () for name in names}, **fields)
        merged = {name: np.concatenate([getattr(t, name) for t in tables]) for name in names}
        return cls(**merged, **fields)
