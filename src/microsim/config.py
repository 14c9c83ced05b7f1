"""
Model specifications.

Plain objects describing a stitched Markov model, filled in from already
parsed numeric data (nested lists, ISO date strings, period strings such
as ``"1Y"``) and turned into model instances by ``build()``.

**Usage:**
```python
spec = StitchedModelSpec.from_dict({
    "dim": 2,
    "mode": "ordinal",
    "period": "1Y",
    "start_date": "2020-01-01",
    "cache_end_date": "2060-01-01",
    "segments": [
        {"transition_matrix": [[0.9, 0.2], [0.1, 0.8]], "length": 10,
         "initial_distribution": [0.5, 0.5]},
        {"transition_matrix": [[0.7, 0.3], [0.3, 0.7]],
         "initial_distribution": [0.2, 0.8]},
    ],
})
model = spec.build_scheduled()
```
"""

import datetime
from typing import Any, List, Mapping, Optional, Union

import numpy as np
from numpy.typing import ArrayLike

from microsim.exceptions import InvalidModel
from microsim.period import Period
from microsim.regimes.scheduled import StitchedMarkovModelWithSchedule
from microsim.regimes.stitched import StitchedMarkovModel

MODES = ("explicit", "ordinal")


def _as_date(value: Union[str, datetime.date, None]) -> Optional[datetime.date]:
    if value is None or isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(value)


class SegmentSpec:
    """Specification of one segment of a stitched model."""

    def __init__(
        self,
        transition_matrix: ArrayLike,
        length: Optional[int] = None,
        initial_distribution: Optional[ArrayLike] = None,
        inter_matrix: Optional[ArrayLike] = None,
    ) -> None:
        """
        Initialize segment specification.

        Parameters
        ----------
        transition_matrix : ArrayLike
            Intra-segment transition matrix, distributions in columns.
        length : int, optional
            Number of steps. None only for the last (open-ended) segment.
        initial_distribution : ArrayLike, optional
            State distribution at the segment start. Needed for the first
            segment, and for every segment in ordinal mode.
        inter_matrix : ArrayLike, optional
            Matrix to the next segment. Needed in explicit mode for every
            segment but the last.
        """
        self.transition_matrix = np.asarray(transition_matrix, dtype=np.float64)
        self.length = length
        self.initial_distribution = (
            None if initial_distribution is None
            else np.asarray(initial_distribution, dtype=np.float64)
        )
        self.inter_matrix = (
            None if inter_matrix is None
            else np.asarray(inter_matrix, dtype=np.float64)
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SegmentSpec":
        return cls(
            transition_matrix=data["transition_matrix"],
            length=data.get("length"),
            initial_distribution=data.get("initial_distribution"),
            inter_matrix=data.get("inter_matrix"),
        )

    def __repr__(self) -> str:
        """String representation."""
        return f"SegmentSpec(length={self.length})"


class StitchedModelSpec:
    """Specification of a (scheduled) stitched Markov model."""

    def __init__(
        self,
        dim: int,
        segments: List[SegmentSpec],
        mode: str = "explicit",
        period: Union[str, Period] = "1Y",
        start_date: Union[str, datetime.date, None] = None,
        cache_end_date: Union[str, datetime.date, None] = None,
    ) -> None:
        """
        Initialize model specification.

        Parameters
        ----------
        dim : int
            Number of states.
        segments : List[SegmentSpec]
            Segments in time order.
        mode : str
            "explicit" to use the given inter-segment matrices, "ordinal" to
            derive them by percentile-to-percentile mapping. Default
            "explicit".
        period : str or Period
            Length of one time step for the scheduled model. Default "1Y".
        start_date : str or datetime.date, optional
            Date of model time 0. Required by ``build_scheduled``.
        cache_end_date : str or datetime.date, optional
            First date not covered by the state distribution cache.
        """
        if mode not in MODES:
            raise InvalidModel(f"mode must be one of {MODES}. Got {mode!r}")
        self.dim = dim
        self.segments = list(segments)
        self.mode = mode
        self.period = Period.parse(period) if isinstance(period, str) else period
        self.start_date = _as_date(start_date)
        self.cache_end_date = _as_date(cache_end_date)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StitchedModelSpec":
        return cls(
            dim=int(data["dim"]),
            segments=[SegmentSpec.from_dict(s) for s in data["segments"]],
            mode=data.get("mode", "explicit"),
            period=data.get("period", "1Y"),
            start_date=data.get("start_date"),
            cache_end_date=data.get("cache_end_date"),
        )

    def _lengths(self) -> List[int]:
        if not self.segments:
            raise InvalidModel("Need at least 1 segment")
        lengths = [s.length for s in self.segments[:-1]]
        if any(n is None for n in lengths):
            raise InvalidModel("Every segment but the last needs a length")
        return [int(n) for n in lengths]

    def build(self) -> StitchedMarkovModel:
        """
        Build the stitched model.

        Raises
        ------
        InvalidModel
            If required segment data for the chosen mode is missing, or the
            model itself fails validation.
        """
        lengths = self._lengths()
        intra = [s.transition_matrix for s in self.segments]
        if self.mode == "ordinal":
            initial = [s.initial_distribution for s in self.segments]
            if any(d is None for d in initial):
                raise InvalidModel(
                    "Ordinal mode needs an initial distribution for every segment"
                )
            return StitchedMarkovModel.ordinal(self.dim, intra, initial, lengths)

        if self.segments[0].initial_distribution is None:
            raise InvalidModel("First segment needs an initial distribution")
        inter = [s.inter_matrix for s in self.segments[:-1]]
        if any(m is None for m in inter):
            raise InvalidModel(
                "Explicit mode needs an inter-segment matrix for every segment but the last"
            )
        return StitchedMarkovModel(
            self.dim, intra, inter, self.segments[0].initial_distribution, lengths
        )

    def build_scheduled(self) -> StitchedMarkovModelWithSchedule:
        """Build the model and put it on the calendar schedule."""
        if self.start_date is None:
            raise InvalidModel("Scheduled model needs a start date")
        return StitchedMarkovModelWithSchedule(
            self.build(), self.period, self.start_date, self.cache_end_date
        )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"StitchedModelSpec(dim={self.dim}, nbr_segments={len(self.segments)}, "
            f"mode={self.mode!r}, period={self.period}, start_date={self.start_date})"
        )
