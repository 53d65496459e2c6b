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

from pytools import log_process

from hprefine.fe_collection import FECollection
from hprefine.forest import CellForest, nchildren_for_shape


logger = logging.getLogger(__name__)


__doc__ = """
.. autofunction:: generate_uniform_forest
.. autofunction:: generate_refined_forest
"""


def generate_uniform_forest(
        ncoarse_cells: int, fe_collection: FECollection,
        fe_index: int = 0) -> CellForest:
    return CellForest(ncoarse_cells, fe_collection,
            active_fe_indices=[fe_index] * ncoarse_cells)


@log_process(logger)
def generate_refined_forest(
        ncoarse_cells: int, fe_collection: FECollection, *,
        levels: int = 1,
        nchildren: int | None = None,
        fe_index: int = 0) -> CellForest:
    """Create a forest of *ncoarse_cells* trees, each refined uniformly
    *levels* times.

    :arg nchildren: the number of children per refined cell. If *None*, it
        is derived from the reference shape of the first element in
        *fe_collection*, see :func:`~hprefine.forest.nchildren_for_shape`.
    """
    if levels < 0:
        raise ValueError("levels must be non-negative")

    if nchildren is None:
        nchildren = nchildren_for_shape(fe_collection[0].shape)

    forest = generate_uniform_forest(ncoarse_cells, fe_collection, fe_index)

    for _ in range(levels):
        for icell in forest.active_cell_ids:
            forest.refine_cell(icell, nchildren)

    return forest

# vim: foldmethod=marker
