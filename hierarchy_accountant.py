"""
Hierarchy Accountant
====================
Accounting identities of the electricity balance and the proportional
rescaling used to force child values onto a known parent total.

    Demand           = Total Generation + Net Imports
    Total Generation = sum of fuel generation

Values may be plain floats or PredictedValue; any arithmetic involving a
predicted input yields a predicted output.
"""

import math
from dataclasses import dataclass

from energy_constants import CLOSURE_TOLERANCE


class IrreconcilableZeroBasis(ValueError):
    """A nonzero parent total cannot be spread over all-zero children."""


@dataclass(frozen=True)
class PredictedValue:
    value: float
    predicted: bool = False

    def __float__(self):
        return float(self.value)

    def _combine(self, other, op):
        other_value = float(other)
        other_predicted = isinstance(other, PredictedValue) and other.predicted
        return PredictedValue(op(self.value, other_value), self.predicted or other_predicted)

    def __add__(self, other):
        return self._combine(other, lambda a, b: a + b)

    def __radd__(self, other):
        return self._combine(other, lambda a, b: b + a)

    def __sub__(self, other):
        return self._combine(other, lambda a, b: a - b)

    def __rsub__(self, other):
        return self._combine(other, lambda a, b: b - a)

    def __mul__(self, other):
        return self._combine(other, lambda a, b: a * b)

    __rmul__ = __mul__


def is_predicted(value):
    return isinstance(value, PredictedValue) and value.predicted


class HierarchyAccountant:
    """Stateless helper shared by the EU and non-EU passes."""

    def __init__(self, tolerance=CLOSURE_TOLERANCE):
        self.tolerance = tolerance

    def adjustment_factor(self, children, parent_total):
        """parent_total / sum(children); raises IrreconcilableZeroBasis on a zero basis."""
        basis = self._basis(children)
        parent = float(parent_total)
        if basis == 0.0:
            if parent == 0.0:
                return 1.0
            raise IrreconcilableZeroBasis(
                f"Cannot distribute {parent:.6g} over {len(children)} zero-valued children")
        return parent / basis

    def rescale(self, children, parent_total):
        """
        Scale every child by parent_total / sum(children).

        Returns a new mapping whose values sum to parent_total (within tolerance).
        A zero basis with a zero parent is returned unchanged.
        """
        factor = self.adjustment_factor(children, parent_total)
        parent_predicted = is_predicted(parent_total)

        out = {}
        for key, value in children.items():
            scaled = float(value) * factor
            if isinstance(value, PredictedValue) or parent_predicted:
                out[key] = PredictedValue(scaled, is_predicted(value) or parent_predicted)
            else:
                out[key] = scaled
        return out

    def sum_children(self, children):
        """Sum of child values, predicted if any child is."""
        total = sum(children.values(), 0.0)
        if any(isinstance(v, PredictedValue) for v in children.values()):
            return total if isinstance(total, PredictedValue) else PredictedValue(total)
        return total

    def derive_total_from_demand_and_imports(self, demand, net_imports):
        """Total Generation = Demand - Net Imports."""
        return demand - net_imports

    def derive_demand_from_generation_and_imports(self, generation, net_imports):
        """Demand = Total Generation + Net Imports."""
        return generation + net_imports

    def is_closed(self, children, parent_total, tolerance=None):
        tol = self.tolerance if tolerance is None else tolerance
        return abs(float(sum(children.values(), 0.0)) - float(parent_total)) <= tol

    def _basis(self, children):
        basis = 0.0
        for key, value in children.items():
            v = float(value)
            if math.isnan(v):
                raise ValueError(f"Child '{key}' has no value; fill gaps before rescaling")
            basis += v
        return basis
