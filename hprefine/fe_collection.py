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

from collections.abc import Iterable, Iterator

import numpy as np

import modepy as mp
from pytools import Record, is_single_valued


__doc__ = """
.. autoclass:: FiniteElement
.. autoclass:: FECollection

.. autofunction:: make_fe_collection
"""


# {{{ finite element

class FiniteElement(Record):
    """A polynomial finite element on a reference cell, described by the
    :mod:`modepy` function space it spans.

    .. attribute:: shape

        A :class:`modepy.Shape`.

    .. attribute:: order

        The polynomial degree of the element.

    .. attribute:: space

        The :class:`modepy.FunctionSpace` obtained from
        :func:`modepy.space_for_shape`.

    .. attribute:: dim
    .. attribute:: ndofs
    """

    def __init__(self, shape: mp.Shape, order: int) -> None:
        order = int(order)
        if order < 0:
            raise ValueError(f"polynomial degree must be non-negative, got {order}")

        super().__init__(
                shape=shape,
                order=order,
                space=mp.space_for_shape(shape, order))

    @property
    def dim(self) -> int:
        return self.shape.dim

    @property
    def ndofs(self) -> int:
        return self.space.space_dim

    def __repr__(self) -> str:
        return f"{type(self).__name__}({type(self.shape).__name__}" \
                f"({self.dim}), order={self.order})"

# }}}


# {{{ collection

class FECollection:
    """An ordered collection of :class:`FiniteElement` instances.

    The position of an element in the collection defines the hierarchy used
    for p-adaptation: the element at index ``i + 1`` is superordinate to the
    one at index ``i``, and the element at ``i - 1`` is subordinate to it.
    Polynomial degrees must not decrease along the collection.

    .. attribute:: degrees

        An :class:`numpy.ndarray` of the polynomial degree of each element.

    .. attribute:: max_degree

    .. automethod:: degree
    .. automethod:: check_fe_index
    .. automethod:: next_in_hierarchy
    .. automethod:: previous_in_hierarchy
    """

    def __init__(self, elements: Iterable[FiniteElement]) -> None:
        elements = tuple(elements)

        if not elements:
            raise ValueError("an FE collection needs at least one element")

        if not is_single_valued(el.dim for el in elements):
            raise ValueError("all elements of an FE collection must share "
                    "the same reference dimension")

        degrees = np.array([el.order for el in elements], dtype=np.int32)
        if np.any(np.diff(degrees) < 0):
            raise ValueError("polynomial degrees must not decrease along "
                    f"the FE collection, got {degrees.tolist()}")

        self.elements = elements
        self.degrees = degrees

    def __len__(self) -> int:
        return len(self.elements)

    def __getitem__(self, fe_index: int) -> FiniteElement:
        return self.elements[self.check_fe_index(fe_index)]

    def __iter__(self) -> Iterator[FiniteElement]:
        return iter(self.elements)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({list(self.elements)!r})"

    @property
    def max_degree(self) -> int:
        return int(self.degrees[-1])

    def check_fe_index(self, fe_index: int) -> int:
        """Return *fe_index* as an :class:`int` or raise :exc:`IndexError`
        if it does not refer to an element of this collection.
        """
        fe_index = int(fe_index)
        if not 0 <= fe_index < len(self.elements):
            raise IndexError(f"FE index {fe_index} out of range for "
                    f"a collection of {len(self.elements)} elements")

        return fe_index

    def degree(self, fe_index: int) -> int:
        return int(self.degrees[self.check_fe_index(fe_index)])

    def next_in_hierarchy(self, fe_index: int) -> int:
        """Return the index of the element superordinate to *fe_index*.
        The last element is its own superordinate.
        """
        fe_index = self.check_fe_index(fe_index)
        return min(fe_index + 1, len(self.elements) - 1)

    def previous_in_hierarchy(self, fe_index: int) -> int:
        """Return the index of the element subordinate to *fe_index*.
        The first element is its own subordinate.
        """
        fe_index = self.check_fe_index(fe_index)
        return max(fe_index - 1, 0)

# }}}


def make_fe_collection(shape: mp.Shape, orders: Iterable[int]) -> FECollection:
    """
    :arg shape: a :class:`modepy.Shape`, e.g. ``modepy.Hypercube(2)``.
    :arg orders: the polynomial degrees of the elements, in hierarchy order.
    """
    return FECollection(FiniteElement(shape, order) for order in orders)

# vim: foldmethod=marker
