__copyright__ = "Copyright (C) 2024 hprefine contributors"

__license__ = """
Permission is hereby granted, free of charge, to any person obtaining a copy
of this software and associated documentation files (the "Software"), to deal
in the Software without restriction, including without limitation the rights
to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
copies of the Software, and to permit persons to whom the Software is
furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in
all copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN
THE SOFTWARE.
"""

import logging

import numpy as np
import pytest

import modepy as mp

from hprefine import DataUnavailable, InconsistentFlagsError
from hprefine.fe_collection import make_fe_collection
from hprefine.forest import (
    INVALID_FE_INDEX,
    CellForest,
    clean_coarsen_flags,
    execute_coarsening_and_refinement,
)
from hprefine.generation import generate_refined_forest, generate_uniform_forest


logger = logging.getLogger(__name__)


def get_fe_collection():
    return make_fe_collection(mp.Simplex(2), [1, 2, 3])


# {{{ topology

def test_forest_topology():
    forest = CellForest(2, get_fe_collection())
    assert forest.active_cell_ids.tolist() == [0, 1]

    children = forest.refine_cell(1, 4)
    assert children == (2, 3, 4, 5)
    assert forest.ncells == 6
    assert forest.nactive_cells == 5
    assert forest.active_cell_ids.tolist() == [0, 2, 3, 4, 5]

    assert not forest.is_active(1)
    assert forest.parent(3) == 1
    assert forest.siblings(3) == children
    assert forest.level(3) == 1
    assert forest.active_cell_index(3) == 2

    assert not forest.has_parent(0)
    with pytest.raises(DataUnavailable):
        forest.parent(0)
    with pytest.raises(DataUnavailable):
        forest.siblings(0)

    with pytest.raises(IndexError):
        forest.is_active(17)


def test_children_inherit_fe_index():
    forest = CellForest(1, get_fe_collection(), active_fe_indices=[2])
    children = forest.refine_cell(0, 2)

    assert [forest.active_fe_index(child) for child in children] == [2, 2]


@pytest.mark.parametrize(("shape", "levels", "nactive"), [
    (mp.Simplex(2), 2, 3 * 16),
    (mp.Hypercube(3), 1, 3 * 8),
    (mp.Hypercube(1), 3, 3 * 8),
    ])
def test_generate_refined_forest(shape, levels, nactive):
    fe_collection = make_fe_collection(shape, [1, 2])
    forest = generate_refined_forest(3, fe_collection, levels=levels, fe_index=1)

    assert forest.nactive_cells == nactive
    assert (forest.get_active_fe_indices() == 1).all()
    assert all(forest.level(icell) == levels for icell in forest.active_cell_ids)

# }}}


# {{{ flags

def test_flags_are_exclusive():
    forest = generate_uniform_forest(1, get_fe_collection())

    forest.set_refine_flag(0)
    forest.set_coarsen_flag(0)
    assert forest.coarsen_flag_set(0)
    assert not forest.refine_flag_set(0)

    forest.set_refine_flag(0)
    assert forest.refine_flag_set(0)
    assert not forest.coarsen_flag_set(0)


def test_markers_on_inactive_cell():
    forest = generate_uniform_forest(1, get_fe_collection())
    forest.refine_cell(0, 2)

    with pytest.raises(ValueError):
        forest.set_refine_flag(0)
    with pytest.raises(ValueError):
        forest.set_future_fe_index(0, 1)


def test_future_fe_index():
    forest = generate_uniform_forest(2, get_fe_collection())

    assert forest.future_fe_index(0) == INVALID_FE_INDEX
    assert not forest.future_fe_index_set(0)

    forest.set_future_fe_index(0, 2)
    assert forest.future_fe_index_set(0)
    assert forest.get_future_fe_indices().tolist() == [2, INVALID_FE_INDEX]

    with pytest.raises(IndexError):
        forest.set_future_fe_index(1, 3)

    forest.clear_future_fe_index(0)
    assert not forest.future_fe_index_set(0)


def test_flags_from_array():
    forest = generate_refined_forest(1, get_fe_collection(), levels=1)

    forest.set_refine_flags_from_array([True, False, False, False])
    forest.set_coarsen_flags_from_array(np.array([False, False, True, True]))

    assert forest.get_active_refine_flags().tolist() == [
            True, False, False, False]
    assert forest.get_active_coarsen_flags().tolist() == [
            False, False, True, True]

    with pytest.raises(ValueError):
        forest.set_refine_flags_from_array([True, False])


def test_check_flag_consistency():
    forest = generate_uniform_forest(2, get_fe_collection())
    forest.set_refine_flag(0)
    forest.set_future_fe_index(1, 0)
    forest.check_flag_consistency()

    forest._coarsen_flags[0] = True
    with pytest.raises(InconsistentFlagsError):
        forest.check_flag_consistency()

    forest = generate_uniform_forest(1, get_fe_collection())
    forest.refine_cell(0, 2)
    forest._future_fe_indices[0] = 1
    with pytest.raises(InconsistentFlagsError):
        forest.check_flag_consistency()

# }}}


# {{{ coarsening cleanup

def test_clean_coarsen_flags():
    forest = generate_refined_forest(3, get_fe_collection(), levels=1,
            nchildren=2)
    # coarse cells 0, 1, 2 with children (3, 4), (5, 6), (7, 8)
    forest.set_coarsen_flag(3)
    forest.set_coarsen_flag(4)
    forest.set_coarsen_flag(5)
    forest.refine_cell(8, 2)
    forest.set_coarsen_flag(7)

    assert clean_coarsen_flags(forest) == 2

    assert forest.coarsen_flag_set(3)
    assert forest.coarsen_flag_set(4)
    assert not forest.coarsen_flag_set(5)
    assert not forest.coarsen_flag_set(7)


def test_clean_coarsen_flags_on_coarse_cell():
    forest = generate_uniform_forest(2, get_fe_collection())
    forest.set_coarsen_flag(1)

    assert clean_coarsen_flags(forest) == 1
    assert not forest.get_active_coarsen_flags().any()

# }}}


# {{{ execution

def test_execute_refinement_and_p_adaptation():
    forest = generate_uniform_forest(3, get_fe_collection(), fe_index=1)
    forest.set_refine_flag(0)
    forest.set_future_fe_index(1, 2)
    forest.set_refine_flag(2)
    forest.set_future_fe_index(2, 0)

    execute_coarsening_and_refinement(forest, nchildren=2)

    assert forest.active_cell_ids.tolist() == [1, 3, 4, 5, 6]
    assert forest.children(0) == (3, 4)
    assert forest.children(2) == (5, 6)
    assert forest.get_active_fe_indices().tolist() == [2, 1, 1, 0, 0]

    assert not forest.get_active_refine_flags().any()
    assert (forest.get_future_fe_indices() == INVALID_FE_INDEX).all()


def test_execute_coarsening():
    forest = generate_refined_forest(2, get_fe_collection(), levels=1,
            nchildren=2)
    # coarse cells 0, 1 with children (2, 3), (4, 5)
    forest.set_active_fe_index(3, 2)
    for icell in [2, 3, 4]:
        forest.set_coarsen_flag(icell)

    execute_coarsening_and_refinement(forest, nchildren=2)

    assert forest.active_cell_ids.tolist() == [0, 4, 5]
    assert forest.active_fe_index(0) == 2
    assert not forest.is_used(2)
    assert not forest.get_active_coarsen_flags().any()


def test_retired_cell_ids_are_reused():
    forest = CellForest(2, get_fe_collection())
    forest.refine_cell(0, 4)
    forest.coarsen_children(0)
    assert not forest.is_used(3)

    children = forest.refine_cell(1, 4)
    assert children == (2, 3, 4, 5)
    assert forest.ncells == 6
    assert forest.level(3) == 1
    assert forest.parent(3) == 1
    assert forest.siblings(2) == children

    # more children than retired ids: the arena grows
    grandchildren = forest.refine_cell(0, 8)
    assert grandchildren == tuple(range(6, 14))
    assert forest.ncells == 14


def test_arena_bounded_over_adaptation_cycles():
    forest = CellForest(1, get_fe_collection())

    for _ in range(50):
        forest.set_refine_flag(forest.active_cell_ids[0])
        execute_coarsening_and_refinement(forest)
        assert forest.nactive_cells == 4

        forest.set_coarsen_flags_from_array(np.ones(4, dtype=bool))
        execute_coarsening_and_refinement(forest)
        assert forest.active_cell_ids.tolist() == [0]

    assert forest.ncells == 5
    forest.check_flag_consistency()


def test_coarsen_children_requires_active_children():
    forest = generate_refined_forest(1, get_fe_collection(), levels=2,
            nchildren=2)

    with pytest.raises(ValueError):
        forest.coarsen_children(0)

    with pytest.raises(ValueError):
        forest.coarsen_children(forest.active_cell_ids[0])

# }}}


if __name__ == "__main__":
    import sys
    if len(sys.argv) > 1:
        exec(sys.argv[1])
    else:
        from pytest import main
        main([__file__])

# vim: fdm=marker
