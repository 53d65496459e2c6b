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
from collections.abc import Sequence

import numpy as np

import modepy as mp
from pytools import ProcessLogger

from hprefine import DataUnavailable, InconsistentFlagsError
from hprefine.fe_collection import FECollection


logger = logging.getLogger(__name__)

__doc__ = """
.. autodata:: INVALID_FE_INDEX

.. autoclass:: CellForest

.. autofunction:: nchildren_for_shape
.. autofunction:: clean_coarsen_flags
.. autofunction:: execute_coarsening_and_refinement
"""


INVALID_FE_INDEX = -1
"""Marker for an unset future finite element index."""


def nchildren_for_shape(shape: mp.Shape) -> int:
    """Number of children produced by isotropic refinement of a cell of
    type *shape*. Both simplices and hypercubes split into ``2**dim`` cells.
    """
    if not isinstance(shape, (mp.Simplex, mp.Hypercube)):
        raise NotImplementedError(type(shape).__name__)

    return 2**shape.dim


# {{{ cell forest

class CellForest:
    """A forest of hierarchically refined cells, stored as an arena of cell
    records addressed by integer cell ids. Parent and child relations are
    stored as cell ids.

    Cells removed by coarsening are no longer *used*; their ids are handed
    out again by later refinement, so the arena does not grow over repeated
    adaptation cycles. Cells
    without children are *active*; only active cells carry refine/coarsen
    flags, an active finite element index and, optionally, a future finite
    element index.

    .. attribute:: fe_collection

        The :class:`~hprefine.fe_collection.FECollection` that active and
        future FE indices refer to.

    .. attribute:: ncells
    .. attribute:: active_cell_ids
    .. attribute:: nactive_cells

    .. automethod:: is_used
    .. automethod:: is_active
    .. automethod:: level
    .. automethod:: has_parent
    .. automethod:: parent
    .. automethod:: children
    .. automethod:: siblings
    .. automethod:: active_cell_index

    .. automethod:: refine_flag_set
    .. automethod:: coarsen_flag_set
    .. automethod:: set_refine_flag
    .. automethod:: set_coarsen_flag
    .. automethod:: clear_refine_flag
    .. automethod:: clear_coarsen_flag
    .. automethod:: clear_flags

    .. automethod:: active_fe_index
    .. automethod:: set_active_fe_index
    .. automethod:: future_fe_index
    .. automethod:: future_fe_index_set
    .. automethod:: set_future_fe_index
    .. automethod:: clear_future_fe_index
    .. automethod:: clear_future_fe_indices

    .. automethod:: get_active_refine_flags
    .. automethod:: get_active_coarsen_flags
    .. automethod:: get_active_fe_indices
    .. automethod:: get_future_fe_indices
    .. automethod:: set_refine_flags_from_array
    .. automethod:: set_coarsen_flags_from_array

    .. automethod:: check_flag_consistency
    .. automethod:: refine_cell
    .. automethod:: coarsen_children
    """

    def __init__(self, ncoarse_cells: int, fe_collection: FECollection,
            active_fe_indices: Sequence[int] | None = None) -> None:
        """
        :arg ncoarse_cells: the number of level-0 cells (the roots of the
            forest).
        :arg active_fe_indices: the initial FE index of each coarse cell.
            Defaults to zero on every cell.
        """
        ncoarse_cells = int(ncoarse_cells)
        if ncoarse_cells < 1:
            raise ValueError("a cell forest needs at least one coarse cell")

        if active_fe_indices is None:
            active_fe_indices = [0] * ncoarse_cells
        elif len(active_fe_indices) != ncoarse_cells:
            raise ValueError("length of active_fe_indices does not match "
                    "number of coarse cells")

        self.fe_collection = fe_collection

        self._parents = [-1] * ncoarse_cells
        self._children = [() for _ in range(ncoarse_cells)]
        self._levels = [0] * ncoarse_cells
        self._used = [True] * ncoarse_cells

        self._refine_flags = [False] * ncoarse_cells
        self._coarsen_flags = [False] * ncoarse_cells
        self._active_fe_indices = [
                fe_collection.check_fe_index(i) for i in active_fe_indices]
        self._future_fe_indices = [INVALID_FE_INDEX] * ncoarse_cells
        self._free_cells = []

        self._active_cell_ids = None
        self._active_cell_id_to_index = None

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(ncells={self.ncells}, "
                f"nactive_cells={self.nactive_cells})")

    # {{{ topology

    @property
    def ncells(self) -> int:
        """The size of the arena, including retired cells not yet reused."""
        return len(self._parents)

    def _check_cell(self, cell: int) -> int:
        cell = int(cell)
        if not 0 <= cell < len(self._parents) or not self._used[cell]:
            raise IndexError(f"cell {cell} is not part of the forest")
        return cell

    def _check_active(self, cell: int) -> int:
        cell = self._check_cell(cell)
        if self._children[cell]:
            raise ValueError(f"cell {cell} is not active")
        return cell

    def is_used(self, cell: int) -> bool:
        cell = int(cell)
        return 0 <= cell < len(self._parents) and self._used[cell]

    def is_active(self, cell: int) -> bool:
        return not self._children[self._check_cell(cell)]

    def level(self, cell: int) -> int:
        return self._levels[self._check_cell(cell)]

    def has_parent(self, cell: int) -> bool:
        return self._parents[self._check_cell(cell)] >= 0

    def parent(self, cell: int) -> int:
        """
        :raises hprefine.DataUnavailable: if *cell* is a coarse cell.
        """
        parent = self._parents[self._check_cell(cell)]
        if parent < 0:
            raise DataUnavailable(f"coarse cell {cell} has no parent")
        return parent

    def children(self, cell: int) -> tuple[int, ...]:
        return self._children[self._check_cell(cell)]

    def siblings(self, cell: int) -> tuple[int, ...]:
        """Return all children of the parent of *cell*, *cell* included.

        :raises hprefine.DataUnavailable: if *cell* is a coarse cell.
        """
        return self._children[self.parent(cell)]

    def _invalidate_active_cells(self) -> None:
        self._active_cell_ids = None
        self._active_cell_id_to_index = None

    @property
    def active_cell_ids(self) -> np.ndarray:
        """An array of the ids of all active cells, in ascending order. This
        is the traversal order that all per-active-cell arrays follow.
        """
        if self._active_cell_ids is None:
            self._active_cell_ids = np.array([
                    icell for icell in range(len(self._parents))
                    if self._used[icell] and not self._children[icell]
                    ], dtype=np.intp)

        return self._active_cell_ids

    @property
    def nactive_cells(self) -> int:
        return len(self.active_cell_ids)

    def active_cell_index(self, cell: int) -> int:
        """Return the position of the active cell *cell* in
        :attr:`active_cell_ids`.
        """
        cell = self._check_active(cell)
        if self._active_cell_id_to_index is None:
            self._active_cell_id_to_index = {
                    int(icell): i for i, icell in enumerate(self.active_cell_ids)}

        return self._active_cell_id_to_index[cell]

    # }}}

    # {{{ flags

    def refine_flag_set(self, cell: int) -> bool:
        return self._refine_flags[self._check_cell(cell)]

    def coarsen_flag_set(self, cell: int) -> bool:
        return self._coarsen_flags[self._check_cell(cell)]

    def set_refine_flag(self, cell: int) -> None:
        """Flag *cell* for refinement. Clears a coarsen flag on it."""
        cell = self._check_active(cell)
        self._refine_flags[cell] = True
        self._coarsen_flags[cell] = False

    def set_coarsen_flag(self, cell: int) -> None:
        """Flag *cell* for coarsening. Clears a refine flag on it."""
        cell = self._check_active(cell)
        self._coarsen_flags[cell] = True
        self._refine_flags[cell] = False

    def clear_refine_flag(self, cell: int) -> None:
        self._refine_flags[self._check_cell(cell)] = False

    def clear_coarsen_flag(self, cell: int) -> None:
        self._coarsen_flags[self._check_cell(cell)] = False

    def clear_flags(self) -> None:
        """Clear all refine and coarsen flags."""
        ncells = len(self._parents)
        self._refine_flags = [False] * ncells
        self._coarsen_flags = [False] * ncells

    # }}}

    # {{{ finite element indices

    def active_fe_index(self, cell: int) -> int:
        return self._active_fe_indices[self._check_cell(cell)]

    def set_active_fe_index(self, cell: int, fe_index: int) -> None:
        cell = self._check_active(cell)
        self._active_fe_indices[cell] = self.fe_collection.check_fe_index(fe_index)

    def future_fe_index(self, cell: int) -> int:
        """Return the future FE index of *cell*, or :data:`INVALID_FE_INDEX`
        if none is set.
        """
        return self._future_fe_indices[self._check_cell(cell)]

    def future_fe_index_set(self, cell: int) -> bool:
        return self._future_fe_indices[self._check_cell(cell)] != INVALID_FE_INDEX

    def set_future_fe_index(self, cell: int, fe_index: int) -> None:
        cell = self._check_active(cell)
        self._future_fe_indices[cell] = self.fe_collection.check_fe_index(fe_index)

    def clear_future_fe_index(self, cell: int) -> None:
        self._future_fe_indices[self._check_cell(cell)] = INVALID_FE_INDEX

    def clear_future_fe_indices(self) -> None:
        self._future_fe_indices = [INVALID_FE_INDEX] * len(self._parents)

    # }}}

    # {{{ bulk access by active cell

    def _gather_active(self, values, dtype) -> np.ndarray:
        return np.array([values[icell] for icell in self.active_cell_ids],
                dtype=dtype)

    def get_active_refine_flags(self) -> np.ndarray:
        return self._gather_active(self._refine_flags, bool)

    def get_active_coarsen_flags(self) -> np.ndarray:
        return self._gather_active(self._coarsen_flags, bool)

    def get_active_fe_indices(self) -> np.ndarray:
        return self._gather_active(self._active_fe_indices, np.int32)

    def get_future_fe_indices(self) -> np.ndarray:
        """Return the future FE index of each active cell, with
        :data:`INVALID_FE_INDEX` where none is set.
        """
        return self._gather_active(self._future_fe_indices, np.int32)

    def _check_active_flag_array(self, flags) -> np.ndarray:
        flags = np.asarray(flags, dtype=bool)
        if flags.shape != (self.nactive_cells,):
            raise ValueError("length of flag array does not match "
                    "number of active cells")
        return flags

    def set_refine_flags_from_array(self, flags) -> None:
        """Set the refine flag on each active cell whose entry in *flags* is
        *True*. Other cells are left untouched.
        """
        flags = self._check_active_flag_array(flags)
        for icell in self.active_cell_ids[flags]:
            self.set_refine_flag(icell)

    def set_coarsen_flags_from_array(self, flags) -> None:
        """Set the coarsen flag on each active cell whose entry in *flags* is
        *True*. Other cells are left untouched.
        """
        flags = self._check_active_flag_array(flags)
        for icell in self.active_cell_ids[flags]:
            self.set_coarsen_flag(icell)

    # }}}

    def check_flag_consistency(self) -> None:
        """
        :raises hprefine.InconsistentFlagsError: if a cell carries both a
            refine and a coarsen flag, or if a flag or future FE index sits on
            a cell that is not active.
        """
        nfe = len(self.fe_collection)

        for icell in range(len(self._parents)):
            has_marker = (
                    self._refine_flags[icell]
                    or self._coarsen_flags[icell]
                    or self._future_fe_indices[icell] != INVALID_FE_INDEX)

            if not has_marker:
                continue

            if not self._used[icell] or self._children[icell]:
                raise InconsistentFlagsError(
                        f"cell {icell} is not active but carries "
                        "adaptation markers")

            if self._refine_flags[icell] and self._coarsen_flags[icell]:
                raise InconsistentFlagsError(
                        f"cell {icell} is flagged for both refinement "
                        "and coarsening")

            future_fe_index = self._future_fe_indices[icell]
            if (future_fe_index != INVALID_FE_INDEX
                    and not 0 <= future_fe_index < nfe):
                raise InconsistentFlagsError(
                        f"cell {icell} has invalid future FE index "
                        f"{future_fe_index}")

    # {{{ topology changes

    def refine_cell(self, cell: int, nchildren: int) -> tuple[int, ...]:
        """Split the active cell *cell* into *nchildren* new cells, which
        inherit its active FE index. Flags and the future FE index of *cell*
        are cleared. Ids retired by :meth:`coarsen_children` are reused
        (lowest first) before the arena grows.

        :returns: the ids of the new children.
        """
        cell = self._check_active(cell)
        nchildren = int(nchildren)
        if nchildren < 2:
            raise ValueError("a refined cell needs at least two children")

        self._free_cells.sort()
        reused = self._free_cells[:nchildren]
        del self._free_cells[:nchildren]

        first_new = len(self._parents)
        nnew = nchildren - len(reused)
        children = tuple(reused) + tuple(range(first_new, first_new + nnew))

        self._parents.extend([-1] * nnew)
        self._children.extend([()] * nnew)
        self._levels.extend([0] * nnew)
        self._used.extend([False] * nnew)
        self._refine_flags.extend([False] * nnew)
        self._coarsen_flags.extend([False] * nnew)
        self._active_fe_indices.extend([0] * nnew)
        self._future_fe_indices.extend([INVALID_FE_INDEX] * nnew)

        for child in children:
            self._parents[child] = cell
            self._children[child] = ()
            self._levels[child] = self._levels[cell] + 1
            self._used[child] = True
            self._refine_flags[child] = False
            self._coarsen_flags[child] = False
            self._active_fe_indices[child] = self._active_fe_indices[cell]
            self._future_fe_indices[child] = INVALID_FE_INDEX

        self._children[cell] = children
        self._refine_flags[cell] = False
        self._coarsen_flags[cell] = False
        self._future_fe_indices[cell] = INVALID_FE_INDEX

        self._invalidate_active_cells()
        return children

    def coarsen_children(self, cell: int) -> None:
        """Merge the children of *cell* back into *cell*, which becomes
        active again. All children must be active. *cell* takes on the
        highest active FE index found among its children.
        """
        cell = self._check_cell(cell)
        children = self._children[cell]
        if not children:
            raise ValueError(f"cell {cell} has no children to coarsen")
        if any(self._children[child] for child in children):
            raise ValueError(f"not all children of cell {cell} are active")

        self._active_fe_indices[cell] = max(
                self._active_fe_indices[child] for child in children)

        for child in children:
            self._used[child] = False
            self._refine_flags[child] = False
            self._coarsen_flags[child] = False
            self._future_fe_indices[child] = INVALID_FE_INDEX
            self._parents[child] = -1
        self._free_cells.extend(children)

        self._children[cell] = ()
        self._invalidate_active_cells()

    # }}}

# }}}


# {{{ coarsening flag cleanup

def clean_coarsen_flags(forest: CellForest) -> int:
    """Remove coarsen flags that cannot be executed: a group of siblings is
    only merged into its parent if all of them are active and flagged for
    coarsening. Coarse cells cannot be coarsened at all.

    :returns: the number of cleared coarsen flags.
    """
    ncleared = 0

    for icell in forest.active_cell_ids:
        if not forest.coarsen_flag_set(icell):
            continue

        if not forest.has_parent(icell):
            forest.clear_coarsen_flag(icell)
            ncleared += 1
            continue

        siblings = forest.siblings(icell)
        if not all(forest.is_active(sib) and forest.coarsen_flag_set(sib)
                for sib in siblings):
            for sib in siblings:
                if forest.is_active(sib) and forest.coarsen_flag_set(sib):
                    forest.clear_coarsen_flag(sib)
                    ncleared += 1

    logger.debug("cleared %d coarsen flags not shared among siblings", ncleared)
    return ncleared

# }}}


# {{{ executor

def execute_coarsening_and_refinement(
        forest: CellForest, nchildren: int | None = None) -> None:
    """Carry out all adaptation markers on *forest*: active cells switch to
    their future FE index, refine-flagged cells are split into *nchildren*
    children and sibling groups flagged for coarsening throughout are merged
    into their parent. All flags and future FE indices are cleared afterwards.

    :arg nchildren: if *None*, derived from the reference shape of the
        elements in :attr:`CellForest.fe_collection` with
        :func:`nchildren_for_shape`.
    """
    forest.check_flag_consistency()

    if nchildren is None:
        nchildren = nchildren_for_shape(forest.fe_collection[0].shape)

    with ProcessLogger(logger, "executing coarsening and refinement"):
        clean_coarsen_flags(forest)

        active_cell_ids = forest.active_cell_ids
        cells_to_refine = [
                icell for icell in active_cell_ids
                if forest.refine_flag_set(icell)]

        parents_to_coarsen = list(dict.fromkeys(
                forest.parent(icell) for icell in active_cell_ids
                if forest.coarsen_flag_set(icell)))

        nswitched = 0
        for icell in active_cell_ids:
            if forest.future_fe_index_set(icell):
                future_fe_index = forest.future_fe_index(icell)
                if future_fe_index != forest.active_fe_index(icell):
                    nswitched += 1
                forest.set_active_fe_index(icell, future_fe_index)

        forest.clear_flags()
        forest.clear_future_fe_indices()

        for icell in cells_to_refine:
            forest.refine_cell(icell, nchildren)

        for parent in parents_to_coarsen:
            forest.coarsen_children(parent)

    logger.info("adaptation: %d cells refined, %d sibling groups coarsened, "
            "%d cells changed FE index",
            len(cells_to_refine), len(parents_to_coarsen), nswitched)

# }}}

# vim: foldmethod=marker
