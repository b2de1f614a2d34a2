"""
Multipoint map construction for a marker sequence in a fixed order.

If the sequence has no linkage phases yet, they are found marker by
marker: the first pair is fitted under each two-point candidate phase,
then every further marker is added to the already phased prefix under
each of its candidate phases (earlier phases stay frozen) and the
candidate with the best multipoint likelihood wins. One last fit of the
whole order gives the final recombination fractions and likelihood.

If the phases are already known, only the recombination fractions and
the likelihood are (re-)estimated.
"""

import numpy as np
from functools import partial

import analysis_utils
from map_errors import InputError, ConvergenceWarning, PhaseUndetermined
from marker_sequence import MarkerSequence, PHASE_UNDETERMINED
from multipoint_hmm import OutcrossHMMEstimator

DEFAULT_TOLERANCE = 1e-4
# At most four phase candidates exist per step
MAX_PHASE_CORES = 4
DEFAULT_RF_SEED = 0.25

#%%
# =============================================================================
# 1. SINGLE FITS
# =============================================================================

def _seed_rf(twopt, markers, phases):
    """
    Starting recombination fractions for the estimator: the two-point rf of
    each pair under the phase in use, when the table has one.
    """
    lookup = getattr(twopt, "get", None)

    rf = []
    for a, b, phase in zip(markers[:-1], markers[1:], phases):
        entry = None
        if lookup is not None and phase != PHASE_UNDETERMINED:
            entry = lookup((a, b), phase)
        rf.append(float(np.clip(entry.rf, 0.01, 0.49)) if entry is not None else DEFAULT_RF_SEED)

    return rf

def _fit_phases(phases, markers, data, twopt, estimator, tol, rf_init=None):
    """
    Run the multipoint estimator on markers (in order) with the given
    phase vector
    """
    if rf_init is None:
        rf_init = _seed_rf(twopt, markers, phases)

    return estimator.estimate(data.genotype_rows(markers),
                              data.marker_types(markers),
                              tuple(markers),
                              list(phases),
                              tol,
                              rf_init=rf_init)

def _marker_label(data, marker):
    return data.marker_names[marker] if data is not None else str(marker)

#%%
# =============================================================================
# 2. PHASE SEARCH
# =============================================================================

def _search_phases(seq, estimator, tol, phase_cores, verbose):
    markers = seq.markers
    data = seq.data
    twopt = seq.twopt

    if twopt is None:
        raise InputError("Phase search needs a two-point table to propose candidate phases")

    num_workers = min(phase_cores, MAX_PHASE_CORES)
    issues = []
    chosen = []

    # step k adds markers[k] to the phased prefix markers[:k]
    for step in range(1, len(markers)):
        left, right = markers[step-1], markers[step]

        if verbose:
            print(f"Phasing marker {_marker_label(data, right)}")

        candidates = list(twopt.phases((left, right)))
        prefix = markers[:step+1]
        vectors = [chosen+[int(c.phase)] for c in candidates]

        fits = analysis_utils.pool_map(
            partial(_fit_phases, markers=prefix, data=data, twopt=twopt, estimator=estimator, tol=tol),
            vectors, num_workers)

        for candidate, fit in zip(candidates, fits):
            if not fit.converged:
                issues.append(ConvergenceWarning(
                    f"Estimator did not converge (tol={tol}) adding marker {_marker_label(data, right)} "
                    f"with phase {int(candidate.phase)} at step {step}",
                    marker=right, step=step))

        best = analysis_utils.argmax_first([fit.loglike for fit in fits])

        if best is None:
            issues.append(PhaseUndetermined(
                f"Could not determine phase for marker {_marker_label(data, right)} "
                f"(junction with {_marker_label(data, left)}, step {step})",
                marker=right, step=step))
            chosen.append(PHASE_UNDETERMINED)
        else:
            chosen.append(int(candidates[best].phase))

    final = _fit_phases(chosen, markers, data, twopt, estimator, tol)

    if not final.converged:
        issues.append(ConvergenceWarning(
            f"Estimator did not converge (tol={tol}) on the final fit of {len(markers)} markers",
            marker=markers[-1], step=len(markers)-1))

    return seq.with_map(chosen, final.rf, final.loglike), issues

def _reestimate(seq, estimator, tol):
    rf_init = None if seq.rf_unestimated else list(seq.rf)

    fit = _fit_phases(seq.phases, seq.markers, seq.data, seq.twopt, estimator, tol, rf_init=rf_init)

    issues = []
    if not fit.converged:
        issues.append(ConvergenceWarning(
            f"Estimator did not converge (tol={tol}) re-estimating {len(seq.markers)} markers",
            marker=seq.markers[-1], step=len(seq.markers)-1))

    return seq.with_map(seq.phases, fit.rf, fit.loglike), issues

def map_sequence_collecting(seq, estimator=None, tol=DEFAULT_TOLERANCE, phase_cores=1,
                            reestimate=False, verbose=False):
    """
    Same as map_sequence, but instead of raising warnings returns them.

    Returns (MarkerSequence, [warning instances]). Used by pool workers so
    that warnings travel back to the parent process in a fixed order.
    """
    if not isinstance(seq, MarkerSequence):
        raise InputError(f"Expected a MarkerSequence, got {type(seq).__name__}")
    seq.validate()

    if seq.data is None:
        raise InputError("The sequence has no genotype data attached")
    if phase_cores < 1:
        raise InputError(f"phase_cores must be at least 1, got {phase_cores}")
    if estimator is None:
        estimator = OutcrossHMMEstimator()

    if seq.is_unphased:
        if seq.loglike is not None:
            raise InputError("The sequence has a likelihood but no linkage phases")
        return _search_phases(seq, estimator, tol, phase_cores, verbose)

    if seq.rf_unestimated or seq.loglike is None or reestimate:
        return _reestimate(seq, estimator, tol)

    return seq, []

def map_sequence(seq, estimator=None, tol=DEFAULT_TOLERANCE, phase_cores=1,
                 reestimate=False, verbose=False):
    """
    Estimate the linkage map of a marker sequence in its given order.

    Args:
        seq: MarkerSequence with at least 2 markers.
        estimator: multipoint estimator (OutcrossHMMEstimator by default).
        tol: convergence tolerance handed to the estimator.
        phase_cores: workers used to evaluate phase candidates of one step
            (capped at 4, the number of possible phases).
        reestimate: also refit a sequence that is already fully estimated.
        verbose: print a line per phased marker.

    Returns:
        A new MarkerSequence with phases, recombination fractions and
        log-likelihood. The input is never modified; an already estimated
        sequence is returned as is unless reestimate is set.

    Estimator convergence failures raise ConvergenceWarning and junctions
    whose phase cannot be resolved raise PhaseUndetermined; in both cases
    the best result found is still returned.
    """
    result, issues = map_sequence_collecting(seq, estimator=estimator, tol=tol,
                                             phase_cores=phase_cores, reestimate=reestimate,
                                             verbose=verbose)
    analysis_utils.emit_warnings(issues)

    return result
