"""
Value types flowing through map construction: linkage phase codes,
marker sequences, per-batch maps and the final stitched map.
"""

import dataclasses
from dataclasses import dataclass, field
from enum import IntEnum
from typing import NamedTuple, Optional, Tuple, List

import numpy as np
import pandas as pd

import analysis_utils
from map_errors import InputError

PHASE_UNDETERMINED = -1
RF_UNESTIMATED = -1.0

# =============================================================================
# 1. LINKAGE PHASE
# =============================================================================

class PhaseCode(IntEnum):
    """
    Linkage phase between two adjacent markers of an outcross.
    First letter is the first parent, second letter the second parent;
    C = coupling, R = repulsion.
    """
    CC = 1
    CR = 2
    RC = 3
    RR = 4

    @property
    def flips(self):
        """(first parent, second parent) allele-index flips implied by the phase"""
        return ((self.value - 1) >> 1, (self.value - 1) & 1)

ALL_PHASES = tuple(PhaseCode)
VALID_PHASE_VALUES = {PHASE_UNDETERMINED} | {int(p) for p in ALL_PHASES}

# =============================================================================
# 2. MARKER SEQUENCE
# =============================================================================

@dataclass(frozen=True)
class MarkerSequence:
    """
    An ordered set of markers with (optionally) their linkage phases,
    adjacent recombination fractions and multipoint log-likelihood.

    phases and rf hold one value per adjacent pair. The length-1 vectors
    (PHASE_UNDETERMINED,) and (RF_UNESTIMATED,) mean "not phased yet" and
    "not estimated yet" for the whole sequence. A full-length phases vector
    may still hold PHASE_UNDETERMINED at a junction that could not be
    resolved; for two markers that is told apart from "not phased yet" by
    the estimated rf and likelihood.

    data and twopt are references to the shared dataset and two-point
    table; they are never copied and never compared.
    """
    markers: Tuple[int, ...]
    phases: Tuple[int, ...] = (PHASE_UNDETERMINED,)
    rf: Tuple[float, ...] = (RF_UNESTIMATED,)
    loglike: Optional[float] = None
    data: object = field(default=None, compare=False, repr=False)
    twopt: object = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "markers", tuple(int(m) for m in np.atleast_1d(self.markers)))
        object.__setattr__(self, "phases", tuple(int(p) for p in np.atleast_1d(self.phases)))
        object.__setattr__(self, "rf", tuple(float(r) for r in np.atleast_1d(self.rf)))
        if self.loglike is not None:
            object.__setattr__(self, "loglike", float(self.loglike))
        self.validate()

    def validate(self):
        """Raise InputError if the sequence is malformed"""
        n = len(self.markers)

        if n < 2:
            raise InputError("The sequence must have at least 2 markers")
        if len(set(self.markers)) != n:
            raise InputError(f"The sequence contains repeated markers: {self.markers}")
        if self.data is not None:
            bad = [m for m in self.markers if m < 0 or m >= self.data.n_mar]
            if bad:
                raise InputError(f"Markers {bad} are not in the dataset ({self.data.n_mar} markers)")

        if len(self.phases) != n-1 and not self.is_unphased:
            raise InputError(f"Expected {n-1} phases (or the undetermined sentinel), got {len(self.phases)}")
        if len(self.rf) != n-1 and not self.rf_unestimated:
            raise InputError(f"Expected {n-1} recombination fractions (or the unestimated sentinel), got {len(self.rf)}")

        bad_phases = set(self.phases) - VALID_PHASE_VALUES
        if bad_phases:
            raise InputError(f"Invalid phase codes {sorted(bad_phases)}")
        if not self.rf_unestimated and any((not 0.0 <= r <= 0.5) for r in self.rf):
            raise InputError(f"Recombination fractions must lie in [0, 0.5], got {self.rf}")

    # -------------------------------------------------------------------------

    @property
    def is_unphased(self):
        # a fitted 2-marker map whose only junction stayed undetermined is phased
        return self.phases == (PHASE_UNDETERMINED,) and (self.rf_unestimated or self.loglike is None)

    @property
    def rf_unestimated(self):
        return self.rf == (RF_UNESTIMATED,)

    @property
    def is_resolved(self):
        return not self.is_unphased and not self.rf_unestimated and self.loglike is not None

    def __len__(self):
        return len(self.markers)

    def with_map(self, phases, rf, loglike):
        """Copy of this sequence carrying a new phase/rf/likelihood fit"""
        return dataclasses.replace(self, phases=tuple(phases), rf=tuple(rf), loglike=loglike)

    def with_order(self, markers):
        """Same dataset and two-point table, new order, nothing estimated"""
        return make_seq(self.data, markers, twopt=self.twopt)

    def reversed(self):
        """
        The same map read from the other end. Phases and recombination
        fractions belong to marker pairs, so they just reverse along with
        the order; the likelihood does not change.
        """
        phases = self.phases if self.is_unphased else self.phases[::-1]
        rf = self.rf if self.rf_unestimated else self.rf[::-1]

        return dataclasses.replace(self, markers=self.markers[::-1], phases=phases, rf=rf)

    def subsequence(self, start, end):
        """Unphased sequence made of markers[start:end]"""
        return self.with_order(self.markers[start:end])

def make_seq(data, markers, twopt=None, phases=None):
    """
    Build a MarkerSequence for the given marker indices, optionally with
    a predefined phase vector (recombination fractions then still need to
    be estimated).
    """
    if phases is None:
        phases = (PHASE_UNDETERMINED,)

    return MarkerSequence(markers=tuple(markers), phases=tuple(np.atleast_1d(phases)),
                          data=data, twopt=twopt)

# =============================================================================
# 3. BATCH AND GLOBAL MAPS
# =============================================================================

class BatchMap(NamedTuple):
    """Map of one overlapping batch, [start, end) in the input order"""
    batch_index: int
    start: int
    end: int
    sequence: MarkerSequence

@dataclass
class GlobalMap:
    """
    Final stitched linkage map. Owns copies of all its vectors.

    loglike_is_joint is False when loglike is the sum of independently
    fitted batch likelihoods rather than one multipoint fit of the whole
    order.
    """
    markers: np.ndarray
    phases: np.ndarray
    rf: np.ndarray
    positions: np.ndarray
    loglike: float
    loglike_is_joint: bool = True
    map_function: str = "kosambi"
    marker_names: Optional[List[str]] = None

    def __post_init__(self):
        self.markers = np.array(self.markers, dtype=np.int64)
        self.phases = np.array(self.phases, dtype=np.int64)
        self.rf = np.array(self.rf, dtype=float)
        self.positions = np.array(self.positions, dtype=float)
        if self.marker_names is not None:
            self.marker_names = list(self.marker_names)

    @classmethod
    def from_sequence(cls, seq, map_function="kosambi", loglike=None, loglike_is_joint=True):
        """Build a GlobalMap from a fully estimated MarkerSequence"""
        if seq.is_unphased or seq.rf_unestimated:
            raise InputError("Only phased sequences with estimated recombination fractions can become a map")

        names = None
        if seq.data is not None:
            names = [seq.data.marker_names[m] for m in seq.markers]

        return cls(markers=seq.markers,
                   phases=seq.phases,
                   rf=seq.rf,
                   positions=analysis_utils.cumulative_positions(seq.rf, map_function),
                   loglike=seq.loglike if loglike is None else loglike,
                   loglike_is_joint=loglike_is_joint,
                   map_function=map_function,
                   marker_names=names)

    def __len__(self):
        return len(self.markers)

    @property
    def length_cm(self):
        return float(self.positions[-1]) if len(self.positions) else 0.0

    def to_dataframe(self):
        """
        One row per marker: index, name, cumulative position and the
        phase/rf linking it to the next marker (missing for the last one).
        """
        n = len(self.markers)
        rf_next = np.full(n, np.nan)
        rf_next[:n-1] = self.rf
        phase_next = [int(p) for p in self.phases] + [None]

        return pd.DataFrame({
            "marker": self.markers,
            "name": self.marker_names if self.marker_names is not None else [str(m) for m in self.markers],
            "position_cM": self.positions,
            "phase_to_next": pd.array(phase_next[:n], dtype="Int64"),
            "rf_to_next": rf_next,
        })
