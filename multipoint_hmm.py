"""
Default multipoint estimator for outcross data.

Hidden Markov model over the four inheritance states of an F1 progeny
(allele index from the first parent x allele index from the second
parent), walked along the marker order. Linkage phases fix how allele
indices line up between adjacent markers; the recombination fraction of
each interval is shared by both parents and re-estimated by Baum-Welch.

Any object with the same estimate() signature can replace this one; the
map-construction code never looks inside it.
"""

import numpy as np
from typing import NamedTuple

from map_errors import InputError
from marker_sequence import PhaseCode, PHASE_UNDETERMINED
from outcross_data import SEGREGATION_CLASSES

DEFAULT_MAX_ITER = 1000
DEFAULT_RF_MIN = 1e-6
DEFAULT_RF_INIT = 0.25

_STATE_P = np.array([0, 0, 1, 1])
_STATE_M = np.array([0, 1, 0, 1])

class MultipointResult(NamedTuple):
    rf: np.ndarray
    loglike: float
    converged: bool

#%%
# =============================================================================
# 1. MODEL PIECES
# =============================================================================

def emission_lookup(segr_type):
    """
    Table of P(genotype code | state) for one segregation type.
    Row 0 (missing) allows every state; row k allows the states of the
    k-th phenotype class.
    """
    classes = SEGREGATION_CLASSES[segr_type]
    lookup = np.zeros((len(classes)+1, 4))
    lookup[0, :] = 1.0

    for code, states in enumerate(classes, start=1):
        lookup[code, list(states)] = 1.0

    return lookup

_EMISSION_LOOKUPS = {t: emission_lookup(t) for t in SEGREGATION_CLASSES}

def recombination_counts(phase):
    """
    4x4 matrix with the number of recombinant meioses (0, 1 or 2) implied
    by moving from state s at one marker to state s' at the next, given
    the linkage phase between them.
    """
    flip_p, flip_m = PhaseCode(phase).flips

    rec_p = (_STATE_P[:, np.newaxis] ^ flip_p) != _STATE_P[np.newaxis, :]
    rec_m = (_STATE_M[:, np.newaxis] ^ flip_m) != _STATE_M[np.newaxis, :]

    return rec_p.astype(int) + rec_m.astype(int)

def transition_matrix(phase, rf):
    """
    Transition matrix between adjacent markers. An undetermined phase
    gives the uniform matrix, i.e. the interval carries no linkage.
    """
    if phase == PHASE_UNDETERMINED:
        return np.full((4, 4), 0.25)

    counts = recombination_counts(phase)

    return np.where(counts == 0, (1.0-rf)**2, np.where(counts == 1, rf*(1.0-rf), rf**2))

def build_emissions(genotype_rows, marker_types):
    """
    Emission probabilities, shape (markers, individuals, 4)
    """
    return np.stack([_EMISSION_LOOKUPS[t][np.asarray(row)] for row, t in zip(genotype_rows, marker_types)])

def forward_backward(emissions, transitions):
    """
    Scaled forward-backward pass.

    Returns (alpha, beta, scale) where alpha[k] is normalised per individual,
    beta[k] is scaled by the forward scale factor of marker k+1 and
    sum(log(scale)) is the log-likelihood.
    """
    n_mar, n_ind, _ = emissions.shape

    alpha = np.empty_like(emissions)
    beta = np.empty_like(emissions)
    scale = np.empty((n_mar, n_ind))

    with np.errstate(divide="ignore", invalid="ignore"):
        a = 0.25*emissions[0]
        scale[0] = a.sum(axis=1)
        alpha[0] = a/scale[0][:, np.newaxis]

        for k in range(1, n_mar):
            a = (alpha[k-1] @ transitions[k-1])*emissions[k]
            scale[k] = a.sum(axis=1)
            alpha[k] = a/scale[k][:, np.newaxis]

        beta[-1] = 1.0
        for k in range(n_mar-2, -1, -1):
            beta[k] = ((emissions[k+1]*beta[k+1]) @ transitions[k].T)/scale[k+1][:, np.newaxis]

    return alpha, beta, scale

def _scale_loglike(scale):
    if not np.all(scale > 0):
        return -np.inf

    return float(np.sum(np.log(scale)))

#%%
# =============================================================================
# 2. ESTIMATOR
# =============================================================================

class OutcrossHMMEstimator:
    """
    Multipoint recombination fraction estimator (EM over the outcross HMM).

    estimate() is the collaborator interface used by map construction:
    genotype rows in map order, their segregation types, the order itself
    (only used for messages), one phase per interval and a convergence
    tolerance. It returns the fitted rf vector, the natural log-likelihood
    and whether the tolerance was reached within max_iter iterations.
    """
    def __init__(self, max_iter=DEFAULT_MAX_ITER, rf_min=DEFAULT_RF_MIN):
        self.max_iter = max_iter
        self.rf_min = rf_min

    def _check_inputs(self, genotype_rows, marker_types, phases):
        n_mar = len(genotype_rows)
        if n_mar < 2:
            raise InputError("Multipoint estimation needs at least 2 markers")
        if len(marker_types) != n_mar:
            raise InputError(f"Got {len(marker_types)} marker types for {n_mar} genotype rows")
        if len(phases) != n_mar-1:
            raise InputError(f"Expected {n_mar-1} phases, got {len(phases)}")

    def loglike_at(self, genotype_rows, marker_types, phases, rf):
        """Log-likelihood of the data for fixed phases and recombination fractions"""
        genotype_rows = np.asarray(genotype_rows)
        phases = [int(p) for p in phases]
        self._check_inputs(genotype_rows, marker_types, phases)

        emissions = build_emissions(genotype_rows, marker_types)
        transitions = [transition_matrix(p, r) for p, r in zip(phases, rf)]

        _, _, scale = forward_backward(emissions, transitions)

        return _scale_loglike(scale)

    def estimate(self, genotype_rows, marker_types, order, phases, tol=1e-4, rf_init=None):
        genotype_rows = np.asarray(genotype_rows)
        phases = [int(p) for p in phases]
        self._check_inputs(genotype_rows, marker_types, phases)

        n_mar, n_ind = genotype_rows.shape
        determined = np.array([p != PHASE_UNDETERMINED for p in phases])

        if rf_init is None:
            rf = np.full(n_mar-1, DEFAULT_RF_INIT)
        else:
            rf = np.clip(np.asarray(rf_init, dtype=float), self.rf_min, 0.49)
        rf[~determined] = 0.5

        if n_ind == 0:
            return MultipointResult(rf, 0.0, True)

        emissions = build_emissions(genotype_rows, marker_types)
        counts = [recombination_counts(p) if p != PHASE_UNDETERMINED else None for p in phases]

        converged = False
        for _ in range(self.max_iter):
            transitions = [transition_matrix(p, r) for p, r in zip(phases, rf)]
            alpha, beta, scale = forward_backward(emissions, transitions)

            if not np.all(scale > 0):
                # Data impossible under this phase vector
                return MultipointResult(rf, -np.inf, True)

            new_rf = rf.copy()
            for k in range(n_mar-1):
                if not determined[k]:
                    continue
                weighted_next = emissions[k+1]*beta[k+1]/scale[k+1][:, np.newaxis]
                expected = np.einsum("is,st,it->", alpha[k], transitions[k]*counts[k], weighted_next)
                new_rf[k] = expected/(2.0*n_ind)

            new_rf[determined] = np.clip(new_rf[determined], self.rf_min, 0.5)

            delta = np.max(np.abs(new_rf-rf)) if len(rf) else 0.0
            rf = new_rf

            if delta < tol:
                converged = True
                break

        transitions = [transition_matrix(p, r) for p, r in zip(phases, rf)]
        _, _, scale = forward_backward(emissions, transitions)

        return MultipointResult(rf, _scale_loglike(scale), converged)

    def __repr__(self):
        return f"OutcrossHMMEstimator(max_iter={self.max_iter}, rf_min={self.rf_min})"

def null_loglike(estimator, genotype_rows, marker_types):
    """
    Log-likelihood with every interval unlinked (rf = 0.5). Used as the
    denominator of LOD scores; does not depend on phases.
    """
    n_int = len(genotype_rows)-1

    return estimator.loglike_at(genotype_rows, marker_types, [int(PhaseCode.CC)]*n_int, [0.5]*n_int)

