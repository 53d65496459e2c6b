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

import enum
import logging

import numpy as np

from pytools import ProcessLogger

from hprefine.forest import CellForest


logger = logging.getLogger(__name__)

__doc__ = """
Deciding between h- and p-adaptation
====================================

With hp-adaptive methods, a cell flagged for refinement or coarsening by an
error estimator may be adapted in two ways: geometrically, by splitting it or
merging it with its siblings (h-adaptation), or by switching to the
superordinate or subordinate element of the
:class:`~hprefine.fe_collection.FECollection` (p-adaptation). Irregular
solutions are better served by the former, smooth ones by the latter.

The intended workflow on a :class:`~hprefine.forest.CellForest` is:

#. Flag cells for refinement and coarsening from an error estimate.
#. Decide which flagged cells qualify for p-adaptation with one of the
   functions in :ref:`setting-future-fe-indices`. They assign a *future FE
   index* on top of the existing flags.
#. Resolve cells marked for both kinds of adaptation with
   :func:`force_p_over_h` or :func:`choose_p_over_h`.
#. Hand the forest to
   :func:`~hprefine.forest.execute_coarsening_and_refinement`.

.. _setting-future-fe-indices:

Setting future FE indices
-------------------------

.. autofunction:: full_p_adaptivity
.. autofunction:: p_adaptivity_from_flags
.. autofunction:: p_adaptivity_from_threshold
.. autofunction:: p_adaptivity_from_regularity
.. autofunction:: p_adaptivity_from_prediction

Deciding between h and p
------------------------

.. autofunction:: force_p_over_h
.. autofunction:: choose_p_over_h

Inspecting the outcome
----------------------

.. autoclass:: AdaptationIntent
.. autofunction:: classify_adaptation
.. autofunction:: count_adaptation_intents
"""


# {{{ helpers

def _as_active_cell_vector(forest: CellForest, values, name: str,
        dtype=None) -> np.ndarray:
    values = np.asarray(values, dtype=dtype)

    if values.shape != (forest.nactive_cells,):
        raise ValueError(f"length of '{name}' does not match number of "
                f"active cells: expected {forest.nactive_cells}, "
                f"got shape {values.shape}")

    return values


def _check_fraction(fraction: float, name: str) -> float:
    fraction = float(fraction)
    if not 0 <= fraction <= 1:
        raise ValueError(f"'{name}' must be in [0, 1], got {fraction}")
    return fraction


def _assign_future_fe_indices(forest: CellForest, p_flags: np.ndarray) -> int:
    fe_collection = forest.fe_collection

    nassigned = 0
    for icell, p_flag in zip(forest.active_cell_ids, p_flags):
        if not p_flag:
            continue

        if forest.refine_flag_set(icell):
            forest.set_future_fe_index(icell,
                    fe_collection.next_in_hierarchy(forest.active_fe_index(icell)))
            nassigned += 1
        elif forest.coarsen_flag_set(icell):
            forest.set_future_fe_index(icell,
                    fe_collection.previous_in_hierarchy(
                        forest.active_fe_index(icell)))
            nassigned += 1

    return nassigned

# }}}


# {{{ setting future fe indices

def full_p_adaptivity(forest: CellForest) -> None:
    """Assign a future FE index to every cell flagged for refinement or
    coarsening: the superordinate element for refinement, the subordinate
    one for coarsening.

    Cells already using the last (first) element of the collection are
    assigned their own active FE index when flagged for refinement
    (coarsening).
    """
    p_flags = np.ones(forest.nactive_cells, dtype=bool)
    nassigned = _assign_future_fe_indices(forest, p_flags)

    logger.debug("full p-adaptivity: assigned %d future FE indices", nassigned)


def p_adaptivity_from_flags(forest: CellForest, p_flags) -> None:
    """Assign future FE indices on cells that have been specifically flagged
    for p-adaptation in *p_flags*. Future FE indices are only assigned to
    cells that also carry a refine or coarsen flag.

    :arg p_flags: an array of :class:`bool` with one entry per active cell,
        in the order of :attr:`~hprefine.forest.CellForest.active_cell_ids`.
    """
    p_flags = _as_active_cell_vector(forest, p_flags, "p_flags", dtype=bool)
    nassigned = _assign_future_fe_indices(forest, p_flags)

    logger.debug("p-adaptivity from flags: assigned %d future FE indices",
            nassigned)


def p_adaptivity_from_threshold(forest: CellForest, smoothness_indicators,
        p_refine_fraction: float = 0.5,
        p_coarsen_fraction: float = 0.5) -> None:
    r"""Assign future FE indices on cells whose smoothness indicators meet a
    threshold.

    Thresholds are determined separately for the cells flagged for refinement
    and for those flagged for coarsening, by linear interpolation between the
    smallest and largest indicator within each class:

    .. math::

        \text{threshold} = \min + \text{fraction} \, (\max - \min),

    so that a fraction of ``0`` corresponds to the minimum and ``1`` to the
    maximum. A refine-flagged cell qualifies for p-refinement if its indicator
    is larger than the refinement threshold, a coarsen-flagged cell qualifies
    for p-coarsening if its indicator is smaller than the coarsening
    threshold.

    Both comparisons are strict. If all indicators of a class coincide, no
    cell of that class qualifies. A class without any flagged cells is
    skipped.

    :arg smoothness_indicators: one value per active cell.
    :arg p_refine_fraction: interpolation factor in :math:`[0, 1]`.
    :arg p_coarsen_fraction: interpolation factor in :math:`[0, 1]`.
    """
    smoothness_indicators = _as_active_cell_vector(
            forest, smoothness_indicators, "smoothness_indicators")
    p_refine_fraction = _check_fraction(p_refine_fraction, "p_refine_fraction")
    p_coarsen_fraction = _check_fraction(p_coarsen_fraction, "p_coarsen_fraction")

    refine_flags = forest.get_active_refine_flags()
    coarsen_flags = forest.get_active_coarsen_flags()

    p_flags = np.zeros(forest.nactive_cells, dtype=bool)

    if refine_flags.any():
        indicators = smoothness_indicators[refine_flags]
        min_indicator = indicators.min()
        threshold_refine = (
                min_indicator
                + p_refine_fraction * (indicators.max() - min_indicator))

        p_flags |= refine_flags & (smoothness_indicators > threshold_refine)
        logger.debug("p-adaptivity from threshold: refinement threshold %g",
                threshold_refine)

    if coarsen_flags.any():
        indicators = smoothness_indicators[coarsen_flags]
        min_indicator = indicators.min()
        threshold_coarsen = (
                min_indicator
                + p_coarsen_fraction * (indicators.max() - min_indicator))

        p_flags |= coarsen_flags & (smoothness_indicators < threshold_coarsen)
        logger.debug("p-adaptivity from threshold: coarsening threshold %g",
                threshold_coarsen)

    nassigned = _assign_future_fe_indices(forest, p_flags)
    logger.debug("p-adaptivity from threshold: assigned %d future FE indices",
            nassigned)


def p_adaptivity_from_regularity(forest: CellForest, sobolev_indices) -> None:
    r"""Assign future FE indices based on the estimated regularity of the
    (unknown) analytical solution.

    With an estimate :math:`k_K` of the local Sobolev regularity index on
    cell :math:`K`, a cell flagged for refinement is p-refined if
    :math:`k_K > p_{K,\text{super}}`, the degree of the element superordinate
    to its active element. A cell flagged for coarsening is p-coarsened if
    :math:`k_K < p_{K,\text{sub}}`, the degree of the subordinate element.

    See Houston and Süli, *A note on the design of hp-adaptive finite element
    methods for elliptic partial differential equations*, CMAME 194(2), 2005.
    `DOI <https://doi.org/10.1016/j.cma.2004.04.009>`__

    :arg sobolev_indices: one value per active cell.
    """
    sobolev_indices = _as_active_cell_vector(
            forest, sobolev_indices, "sobolev_indices")

    fe_collection = forest.fe_collection
    refine_flags = forest.get_active_refine_flags()
    coarsen_flags = forest.get_active_coarsen_flags()
    fe_indices = forest.get_active_fe_indices()

    super_degrees = np.array([
            fe_collection.degree(fe_collection.next_in_hierarchy(fe_index))
            for fe_index in fe_indices], dtype=np.int32)
    sub_degrees = np.array([
            fe_collection.degree(fe_collection.previous_in_hierarchy(fe_index))
            for fe_index in fe_indices], dtype=np.int32)

    p_flags = (
            (refine_flags & (sobolev_indices > super_degrees))
            | (coarsen_flags & (sobolev_indices < sub_degrees)))

    nassigned = _assign_future_fe_indices(forest, p_flags)
    logger.debug("p-adaptivity from regularity: assigned %d future FE indices",
            nassigned)


def p_adaptivity_from_prediction(forest: CellForest, error_indicators,
        predicted_errors) -> None:
    r"""Assign future FE indices based on how well the error of a cell was
    predicted in the previous adaptation cycle.

    A flagged cell is p-adapted if its error indicator :math:`\eta_K^2` is
    smaller than the predicted one, :math:`\eta_K^2 < \eta_{K,\text{pred}}^2`,
    i.e. the solution behaved as smoothly as assumed. Otherwise it is left to
    h-adaptation.

    For the very first cycle, no prediction exists. Passing a predicted error
    of ``0`` on a cell forces h-adaptation, ``numpy.inf`` forces
    p-adaptation.

    See Melenk and Wohlmuth, *On residual-based a posteriori error estimation
    in hp-FEM*, Adv. Comput. Math. 15, 2001.
    `DOI <https://doi.org/10.1023/A:1014268310921>`__

    :arg error_indicators: one squared error estimate per active cell.
    :arg predicted_errors: one predicted squared error per active cell.
    """
    error_indicators = _as_active_cell_vector(
            forest, error_indicators, "error_indicators")
    predicted_errors = _as_active_cell_vector(
            forest, predicted_errors, "predicted_errors")

    flagged = forest.get_active_refine_flags() | forest.get_active_coarsen_flags()
    p_flags = flagged & (error_indicators < predicted_errors)

    nassigned = _assign_future_fe_indices(forest, p_flags)
    logger.debug("p-adaptivity from prediction: assigned %d future FE indices",
            nassigned)

# }}}


# {{{ deciding between h and p

def force_p_over_h(forest: CellForest) -> None:
    """Choose p-adaptation over h-adaptation in any case: clear refine and
    coarsen flags on all cells that have a future FE index assigned.
    """
    forest.check_flag_consistency()

    ncleared = 0
    with ProcessLogger(logger, "forcing p- over h-adaptation"):
        for icell in forest.active_cell_ids:
            if not forest.future_fe_index_set(icell):
                continue

            if forest.refine_flag_set(icell) or forest.coarsen_flag_set(icell):
                ncleared += 1

            forest.clear_refine_flag(icell)
            forest.clear_coarsen_flag(icell)

    logger.debug("force p over h: cleared h flags on %d cells", ncleared)


def _choose_p_over_h_in_sibling_group(forest: CellForest, parent: int) -> None:
    siblings = forest.children(parent)
    active_siblings = [sib for sib in siblings if forest.is_active(sib)]

    nh_flagged = sum(1 for sib in active_siblings if forest.coarsen_flag_set(sib))
    np_flagged = sum(1 for sib in active_siblings if forest.future_fe_index_set(sib))

    if nh_flagged == len(siblings) and np_flagged != len(siblings):
        # h-coarsening takes place, p-adaptation is not available on all
        # siblings
        for sib in active_siblings:
            forest.clear_future_fe_index(sib)

    elif nh_flagged == len(siblings):
        for sib in active_siblings:
            forest.clear_coarsen_flag(sib)

    else:
        # the group cannot be merged, siblings without a future FE index
        # keep their (void) coarsen flag
        for sib in active_siblings:
            if forest.future_fe_index_set(sib):
                forest.clear_coarsen_flag(sib)


def choose_p_over_h(forest: CellForest) -> None:
    """Choose p-adaptation over h-adaptation whenever it is requested on all
    related cells.

    For refinement, the decision is local: cells flagged for refinement that
    carry a future FE index lose their refine flag.

    Coarsening flags, however, only take effect if all siblings sharing a
    parent are flagged for coarsening. The decision is thus made per sibling
    group:

    * Not all siblings are flagged for coarsening: the group cannot be
      merged. Siblings with a future FE index keep it and lose their coarsen
      flag.
    * All siblings are flagged for coarsening, but not all of them carry a
      future FE index: h-coarsening. All coarsen flags are kept, all future FE
      indices in the group are cleared.
    * All siblings are flagged for coarsening and carry a future FE index:
      p-coarsening. All future FE indices are kept, all coarsen flags in the
      group are cleared.

    Coarse cells cannot be merged and are treated like the first case.

    This anticipates the decision of
    :func:`~hprefine.forest.clean_coarsen_flags` and must therefore be called
    before it, once all flags and future FE indices are final.
    """
    forest.check_flag_consistency()

    with ProcessLogger(logger, "choosing p- over h-adaptation"):
        nrefine_cleared = 0
        coarsening_parents = []

        for icell in forest.active_cell_ids:
            if forest.refine_flag_set(icell):
                if forest.future_fe_index_set(icell):
                    forest.clear_refine_flag(icell)
                    nrefine_cleared += 1

            elif forest.coarsen_flag_set(icell):
                if not forest.has_parent(icell):
                    if forest.future_fe_index_set(icell):
                        forest.clear_coarsen_flag(icell)
                    continue

                coarsening_parents.append(forest.parent(icell))

        # siblings need not be contiguous in the traversal order
        coarsening_parents = list(dict.fromkeys(coarsening_parents))

        for parent in coarsening_parents:
            _choose_p_over_h_in_sibling_group(forest, parent)

    logger.debug("choose p over h: cleared %d refine flags, "
            "decided on %d sibling groups",
            nrefine_cleared, len(coarsening_parents))

# }}}


# {{{ classification

class AdaptationIntent(enum.Enum):
    """What will happen to an active cell once the forest is adapted.

    .. attribute:: NONE
    .. attribute:: PURE_H
    .. attribute:: PURE_P
    .. attribute:: CONFLICTED

        The cell carries both an h flag and a future FE index. Resolve with
        :func:`force_p_over_h` or :func:`choose_p_over_h`.
    """

    NONE = enum.auto()
    PURE_H = enum.auto()
    PURE_P = enum.auto()
    CONFLICTED = enum.auto()


def _coarsening_takes_effect(forest: CellForest, icell: int) -> bool:
    if not forest.coarsen_flag_set(icell) or not forest.has_parent(icell):
        return False

    return all(forest.is_active(sib) and forest.coarsen_flag_set(sib)
            for sib in forest.siblings(icell))


def classify_adaptation(forest: CellForest) -> list[AdaptationIntent]:
    """Return the :class:`AdaptationIntent` of each active cell, in the order
    of :attr:`~hprefine.forest.CellForest.active_cell_ids`. A future FE index
    equal to the active one does not count as p-adaptation. A coarsen flag
    only counts as h-adaptation if the cell has a parent and all of its
    siblings are active and flagged for coarsening; any other coarsen flag is
    dropped by :func:`~hprefine.forest.clean_coarsen_flags`.
    """
    result = []

    for icell in forest.active_cell_ids:
        h_flagged = (forest.refine_flag_set(icell)
                or _coarsening_takes_effect(forest, icell))
        p_flagged = forest.future_fe_index_set(icell)

        if h_flagged and p_flagged:
            result.append(AdaptationIntent.CONFLICTED)
        elif h_flagged:
            result.append(AdaptationIntent.PURE_H)
        elif (p_flagged
                and forest.future_fe_index(icell) != forest.active_fe_index(icell)):
            result.append(AdaptationIntent.PURE_P)
        else:
            result.append(AdaptationIntent.NONE)

    return result


def count_adaptation_intents(forest: CellForest) -> dict[AdaptationIntent, int]:
    counts = dict.fromkeys(AdaptationIntent, 0)
    for intent in classify_adaptation(forest):
        counts[intent] += 1
    return counts

# }}}

# vim: foldmethod=marker
