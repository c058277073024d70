"""Tests for the likelihood models.

Signal tables are written by hand on square_grid so expected shares can be
read off directly.
"""

from __future__ import annotations

import numpy as np
import pytest

from domain.coverage.value_objects import SignalTable
from domain.errors import ConfigurationError
from domain.location.likelihood import (
    LIKELIHOOD_MODELS,
    LikelihoodContext,
    StrengthLikelihood,
    VoronoiLikelihood,
    likelihood_model,
)
from domain.location.value_objects import LikelihoodRow, LikelihoodTable
from domain.parameters import ModelParameters


def create_signal() -> SignalTable:
    """Tile 0: A 0.6 / B 0.2; tile 1: A 0.3; tile 2: tie at 0.4; tile 3: A at 0."""
    return SignalTable(
        tile_id=[0, 0, 1, 2, 2, 3],
        cell_id=["A", "B", "A", "A", "B", "A"],
        strength_dbm=[-80.0, -100.0, -95.0, -94.5, -94.5, -140.0],
        dominance=[0.6, 0.2, 0.3, 0.4, 0.4, 0.0],
    )


def as_dict(table: LikelihoodTable) -> dict[tuple[int, str], float]:
    return {(row.tile_id, row.cell_id): row.p_cell_given_tile for row in table.rows()}


# ===========================================================================
# Voronoi
# ===========================================================================
class TestVoronoiLikelihood:
    def test_every_tile_has_one_cell(self, square_grid, make_cell):
        cells = [make_cell("A", 150.0, 850.0), make_cell("B", 850.0, 150.0)]
        table = VoronoiLikelihood().compute(square_grid, cells, LikelihoodContext())

        assert len(table) == square_grid.n_tiles
        assert table.tile_id.tolist() == list(range(100))
        np.testing.assert_array_equal(table.p_cell_given_tile, 1.0)
        assert table.model == "voronoi"
        assert table.cell_id[0] == "A"
        assert table.cell_id[99] == "B"

    def test_ties_go_to_lowest_cell_id(self, square_grid, make_cell):
        # The x=450 column is equidistant from both cells
        cells = [make_cell("B", 350.0, 500.0), make_cell("A", 550.0, 500.0)]
        table = VoronoiLikelihood().compute(square_grid, cells, LikelihoodContext())

        assert table.cell_id[44] == "A"
        assert table.cell_id[43] == "B"
        assert table.cell_id[45] == "A"

    def test_ties_compare_ids_as_strings(self, square_grid, make_cell):
        cells = [make_cell("9", 350.0, 500.0), make_cell("10", 550.0, 500.0)]
        table = VoronoiLikelihood().compute(square_grid, cells, LikelihoodContext())

        assert table.cell_id[44] == "10"
        assert table.cell_id[43] == "9"

    def test_no_cells(self, square_grid):
        assert len(VoronoiLikelihood().compute(square_grid, [], LikelihoodContext())) == 0


# ===========================================================================
# Strength
# ===========================================================================
class TestStrengthLikelihood:
    def test_dominance_shares(self, square_grid):
        table = StrengthLikelihood().compute(
            square_grid, None, LikelihoodContext(signal=create_signal())
        )
        shares = as_dict(table)

        assert shares[(0, "A")] == pytest.approx(0.75)
        assert shares[(0, "B")] == pytest.approx(0.25)
        assert shares[(1, "A")] == pytest.approx(1.0)
        assert shares[(2, "A")] == pytest.approx(0.5)
        assert 3 not in table.tile_id  # zero dominance everywhere
        assert table.model == "strength"

    def test_rows_are_typed(self, square_grid):
        table = StrengthLikelihood().compute(
            square_grid, None, LikelihoodContext(signal=create_signal())
        )
        assert all(isinstance(row, LikelihoodRow) for row in table.rows())

    def test_threshold_drops_weak_cells(self, square_grid):
        table = StrengthLikelihood(dominance_threshold=0.25).compute(
            square_grid, None, LikelihoodContext(signal=create_signal())
        )
        shares = as_dict(table)

        assert shares == {(0, "A"): 1.0, (1, "A"): 1.0, (2, "A"): 0.5, (2, "B"): 0.5}

    def test_threshold_from_parameters(self, square_grid):
        context = LikelihoodContext(
            signal=create_signal(), params=ModelParameters(dominance_threshold=0.35)
        )
        table = StrengthLikelihood().compute(square_grid, None, context)

        assert set(as_dict(table)) == {(0, "A"), (2, "A"), (2, "B")}

    def test_top_k_keeps_most_dominant(self, square_grid):
        table = StrengthLikelihood(max_cells_per_tile=1).compute(
            square_grid, None, LikelihoodContext(signal=create_signal())
        )

        # Ties at tile 2 go to the lower cell id
        assert as_dict(table) == {(0, "A"): 1.0, (1, "A"): 1.0, (2, "A"): 1.0}

    def test_restrict_to_cells(self, square_grid, make_cell):
        table = StrengthLikelihood().compute(
            square_grid, [make_cell("B", 0.0, 0.0)], LikelihoodContext(signal=create_signal())
        )

        assert table.cell_ids() == ("B",)
        assert as_dict(table) == {(0, "B"): 1.0, (2, "B"): 1.0}

    def test_requires_signal(self, square_grid):
        with pytest.raises(ConfigurationError, match="signal table"):
            StrengthLikelihood().compute(square_grid, None, LikelihoodContext())

    def test_signal_outside_grid(self, square_grid):
        signal = SignalTable(tile_id=[100], cell_id=["A"], strength_dbm=[-80.0], dominance=[0.9])
        with pytest.raises(ConfigurationError, match="outside the grid"):
            StrengthLikelihood().compute(square_grid, None, LikelihoodContext(signal=signal))

    @pytest.mark.parametrize(
        "kwargs", [{"dominance_threshold": 1.0}, {"max_cells_per_tile": 0}]
    )
    def test_invalid_options(self, kwargs):
        with pytest.raises(ConfigurationError):
            StrengthLikelihood(**kwargs)


# ===========================================================================
# Table invariants and registry
# ===========================================================================
def test_likelihood_table_must_normalize_per_tile():
    with pytest.raises(ValueError, match="sum to 1"):
        LikelihoodTable(tile_id=[0, 0], cell_id=["A", "B"], p_cell_given_tile=[0.5, 0.2])


def test_registry():
    assert set(LIKELIHOOD_MODELS) == {"voronoi", "strength"}
    assert isinstance(likelihood_model("voronoi"), VoronoiLikelihood)
    assert isinstance(likelihood_model("strength"), StrengthLikelihood)
    with pytest.raises(ConfigurationError, match="Unknown likelihood model"):
        likelihood_model("nearest")
