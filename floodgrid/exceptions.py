"""
Error taxonomy for the flood inundation pipeline.

Feature extraction errors are normally collected per cell; fitting and
prediction errors are fatal to their stage.
"""

from typing import Iterable, Optional, Sequence


class FloodGridError(RuntimeError):
    """Base class for pipeline errors."""


class InvalidGeometryError(FloodGridError):
    """Raised when a boundary polygon is empty or not a valid geometry."""


class NoCoverageError(FloodGridError):
    """Raised when cells have no intersecting source data for a feature."""

    def __init__(self, feature: str, cell_ids: Iterable[int]):
        self.feature = feature
        self.cell_ids = sorted(int(c) for c in cell_ids)
        preview = ", ".join(str(c) for c in self.cell_ids[:10])
        if len(self.cell_ids) > 10:
            preview += ", ..."
        super().__init__(
            f"No source coverage for '{feature}' in {len(self.cell_ids)} cell(s): [{preview}]"
        )


class InsufficientDataError(FloodGridError):
    """Raised when a stratified split or fold assignment is impossible."""


class SeparationError(FloodGridError):
    """Raised when the logistic regression fit fails to converge."""

    def __init__(self, message: str, iterations: Optional[int] = None):
        self.iterations = iterations
        if iterations is not None:
            message = f"{message} (after {iterations} IRLS iterations)"
        super().__init__(message)


class FeatureMismatchError(FloodGridError):
    """Raised when prediction input does not match the fit-time feature contract."""

    def __init__(self, feature: str, expected: Sequence[str]):
        self.feature = feature
        self.expected = tuple(expected)
        super().__init__(
            f"Feature '{feature}' is missing; model expects {list(self.expected)}"
        )
