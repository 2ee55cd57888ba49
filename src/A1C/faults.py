"""
Fatal data-quality faults.

Raised when the input violates the classification or conversion assumptions
of the pipeline. These are never resolved automatically: the run aborts and
the input (or the unit vocabulary) has to be investigated.
"""

from typing import Sequence


class DataQualityError(ValueError):
    """
    Attributes:
        step: Pipeline step that detected the fault (e.g. 'range-validation').
        scale: Unit category of the offending values (e.g. 'Unknown', 'DCCT').
        values: The offending values, for the diagnostic.
    """

    def __init__(self, step: str, scale: str, values: Sequence[float], message: str):
        self.step = step
        self.scale = scale
        self.values = list(values)
        super().__init__(f"[{step}] {scale}: {message}")
