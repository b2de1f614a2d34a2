"""
Mapping long marker sequences in overlapping batches.

The sequence is cut into overlapping batches (batch_partition), every batch
is ordered (optionally) and mapped on its own, possibly in parallel, and
the batch maps are stitched back together. Consecutive batches share
`overlap` markers; those shared markers decide whether the later batch map
has to be read backwards before it is appended.

The reported likelihood of a stitched map is the sum of the independent
batch likelihoods. This is an approximation (overlaps are counted twice and
junctions are not jointly fitted); set final_reestimate to refit the whole
order and report a true joint likelihood instead.
"""

import numpy as np
import warnings
from functools import partial

import analysis_utils
import phase_search
from batch_partition import partition_batches
from map_errors import InputError, MergeConflict, ConvergenceWarning, PhaseUndetermined
from marker_sequence import MarkerSequence, BatchMap, GlobalMap, PHASE_UNDETERMINED
from multipoint_hmm import OutcrossHMMEstimator

DEFAULT_JUNCTION_WINDOW = 4
DEFAULT_MAP_FUNCTION = "kosambi"

# =============================================================================
# BATCH WORKER FUNCTION (For Parallel Processing)
# =============================================================================

def _process_single_batch(args):
    """
    Worker function to order (optionally) and map a single batch.
    Warnings are collected and returned rather than raised, so the parent
    can re-raise them in batch order.
    """
    (b_idx, start_i, end_i, batch_seq, order_fn, estimator, tol, phase_cores) = args

    issues = []
    seq = batch_seq

    if order_fn is not None:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            seq = order_fn(batch_seq)
        issues.extend(w.message for w in caught)

        if sorted(seq.markers) != sorted(batch_seq.markers):
            raise InputError(f"Ordering step changed the marker set of batch {b_idx}")

    mapped, map_issues = phase_search.map_sequence_collecting(seq, estimator=estimator, tol=tol,
                                                              phase_cores=phase_cores)
    issues.extend(map_issues)

    return {
        'batch_idx': b_idx,
        'batch_map': BatchMap(b_idx, start_i, end_i, mapped),
        'issues': issues
    }

# =============================================================================
# STITCHING
# =============================================================================

def _shared_markers(prev_map, curr_map):
    overlap = prev_map.end-curr_map.start
    shared = set(prev_map.sequence.markers) & set(curr_map.sequence.markers)
    junction = (prev_map.batch_index, curr_map.batch_index)

    if overlap < 1 or len(shared) != overlap:
        raise MergeConflict(
            f"Batches {junction[0]} and {junction[1]} share {len(shared)} markers, "
            f"expected an overlap of {overlap}", junction)

    return shared, overlap

def _orient_first(seq, shared, overlap, junction):
    """Orient the first batch map so that the overlap with batch 1 is its tail"""
    if set(seq.markers[-overlap:]) == shared:
        return seq
    if set(seq.markers[:overlap]) == shared:
        return seq.reversed()

    raise MergeConflict(
        f"Overlap markers of batches {junction[0]} and {junction[1]} are not at either end "
        f"of batch {junction[0]}", junction)

def _orient_next(seq, shared, overlap, junction):
    """
    Orient a later batch map so that the overlap with its predecessor is
    its head. Returns (sequence, reversed_flag).
    """
    if set(seq.markers[:overlap]) == shared:
        return seq, False
    if set(seq.markers[-overlap:]) == shared:
        return seq.reversed(), True

    raise MergeConflict(
        f"Overlap markers of batches {junction[0]} and {junction[1]} do not match "
        f"batch {junction[1]} in either orientation", junction)

def _fit_junction(phase, local_markers, left_phases, right_phases, left_rf, right_rf,
                  data, twopt, estimator, tol):
    entry = twopt.get((local_markers[len(left_phases)], local_markers[len(left_phases)+1]), phase) \
        if hasattr(twopt, "get") else None
    junction_rf = float(np.clip(entry.rf, 0.01, 0.49)) if entry is not None else phase_search.DEFAULT_RF_SEED

    return estimator.estimate(data.genotype_rows(local_markers),
                              data.marker_types(local_markers),
                              tuple(local_markers),
                              list(left_phases)+[int(phase)]+list(right_phases),
                              tol,
                              rf_init=list(left_rf)+[junction_rf]+list(right_rf))

def _resolve_junction(markers, phases, rf, new_seq, overlap, junction, estimator, tol, window, phase_cores):
    """
    Phase and rf between the last stitched marker and the first new marker
    of new_seq, refitted on a local window around the junction.
    Returns (phase, rf, issues).
    """
    data = new_seq.data
    twopt = new_seq.twopt
    right = list(new_seq.markers[overlap:])
    right_phases = list(new_seq.phases[overlap:])
    right_rf = list(new_seq.rf[overlap:])

    n_left = min(window, len(markers))
    n_right = min(window, len(right))

    local_markers = markers[-n_left:]+right[:n_right]
    left_phases = phases[len(markers)-n_left:]
    left_rf = rf[len(markers)-n_left:]

    candidates = list(twopt.phases((markers[-1], right[0])))
    fits = analysis_utils.pool_map(
        partial(_fit_junction, local_markers=local_markers,
                left_phases=left_phases, right_phases=right_phases[:n_right-1],
                left_rf=left_rf, right_rf=right_rf[:n_right-1],
                data=data, twopt=twopt, estimator=estimator, tol=tol),
        [int(c.phase) for c in candidates], min(phase_cores, phase_search.MAX_PHASE_CORES))

    issues = []
    for candidate, fit in zip(candidates, fits):
        if not fit.converged:
            issues.append(ConvergenceWarning(
                f"Estimator did not converge (tol={tol}) joining batches {junction[0]} and {junction[1]} "
                f"with phase {int(candidate.phase)}", marker=right[0]))

    best = analysis_utils.argmax_first([fit.loglike for fit in fits])

    if best is None:
        issues.append(PhaseUndetermined(
            f"Could not determine phase at the junction of batches {junction[0]} and {junction[1]}",
            marker=right[0]))
        return PHASE_UNDETERMINED, 0.5, issues

    return int(candidates[best].phase), float(fits[best].rf[n_left-1]), issues

def _stitch(batch_maps, estimator, tol, window, phase_cores, verbose):
    maps = sorted(batch_maps, key=lambda b: b.batch_index)

    for b in maps:
        if not b.sequence.is_resolved:
            raise InputError(f"Batch {b.batch_index} has not been mapped")

    first = maps[0].sequence
    if len(maps) > 1:
        shared, overlap = _shared_markers(maps[0], maps[1])
        first = _orient_first(first, shared, overlap, (maps[0].batch_index, maps[1].batch_index))

    markers = list(first.markers)
    phases = list(first.phases)
    rf = list(first.rf)
    total_loglike = first.loglike
    issues = []

    for prev_map, curr_map in zip(maps[:-1], maps[1:]):
        junction = (prev_map.batch_index, curr_map.batch_index)
        shared, overlap = _shared_markers(prev_map, curr_map)

        if set(markers[-overlap:]) != shared:
            raise MergeConflict(
                f"Overlap markers of batches {junction[0]} and {junction[1]} are not at the end "
                f"of the stitched map", junction)

        seq, flipped = _orient_next(curr_map.sequence, shared, overlap, junction)
        if verbose and flipped:
            print(f"Batch {junction[1]} reversed to match batch {junction[0]}")

        new_markers = list(seq.markers[overlap:])
        if set(new_markers) & set(markers):
            raise MergeConflict(
                f"Batch {junction[1]} repeats markers already placed by earlier batches", junction)

        junction_phase, junction_rf, junction_issues = _resolve_junction(
            markers, phases, rf, seq, overlap, junction, estimator, tol, window, phase_cores)
        issues.extend(junction_issues)

        markers.extend(new_markers)
        phases.append(junction_phase)
        phases.extend(seq.phases[overlap:])
        rf.append(junction_rf)
        rf.extend(seq.rf[overlap:])
        total_loglike += seq.loglike

    stitched = MarkerSequence(markers=markers, phases=phases, rf=rf, loglike=total_loglike,
                              data=first.data, twopt=first.twopt)

    return stitched, issues

def stitch_batch_maps(batch_maps, estimator=None, tol=phase_search.DEFAULT_TOLERANCE,
                      map_function=DEFAULT_MAP_FUNCTION, junction_window=DEFAULT_JUNCTION_WINDOW,
                      phase_cores=1, verbose=False):
    """
    Stitch independently computed batch maps into one GlobalMap.

    Batch maps are taken in batch order. At each junction the markers the
    two batches share (their overlap) must sit at the start of the later
    map, or at its end, in which case the later map is reversed. The earlier
    map's overlap is kept; the later map only adds its remaining markers,
    and the phase/rf of the new junction pair is refitted on up to
    junction_window markers on each side.

    Raises MergeConflict (with .junction) if two batches cannot be
    reconciled. The likelihood of the result is the sum of batch
    likelihoods (loglike_is_joint=False) when there is more than one batch.
    """
    if not batch_maps:
        raise InputError("No batch maps to stitch")
    if estimator is None:
        estimator = OutcrossHMMEstimator()

    stitched, issues = _stitch(batch_maps, estimator, tol, junction_window, phase_cores, verbose)
    analysis_utils.emit_warnings(issues)

    return GlobalMap.from_sequence(stitched, map_function=map_function,
                                   loglike_is_joint=len(batch_maps) == 1)

# =============================================================================
# MAIN DRIVER
# =============================================================================

def map_overlapping_batches(input_seq, size=50, overlap=15, around=5,
                            order_fn=None,
                            batch_cores=1,
                            phase_cores=1,
                            estimator=None,
                            tol=phase_search.DEFAULT_TOLERANCE,
                            map_function=DEFAULT_MAP_FUNCTION,
                            junction_window=DEFAULT_JUNCTION_WINDOW,
                            final_reestimate=False,
                            verbose=False):
    """
    Map a long marker sequence in overlapping batches.

    Args:
        input_seq: MarkerSequence giving the markers in their current order.
        size, overlap, around: batch layout, see batch_partition.partition_batches.
        order_fn: optional callable MarkerSequence -> MarkerSequence applied to
            every batch before mapping (e.g. a ripple step). It must keep the
            batch's marker set.
        batch_cores: workers mapping batches concurrently.
        phase_cores: workers per batch for phase candidates. Up to
            batch_cores * phase_cores evaluations run at once; keep that
            within the machine.
        estimator: multipoint estimator (OutcrossHMMEstimator by default).
        tol: estimator tolerance.
        map_function: "kosambi" or "haldane".
        junction_window: markers on each side used to refit batch junctions.
        final_reestimate: refit the whole stitched order once at the end and
            report its joint likelihood.
        verbose: print progress and a batch progress bar.

    Returns:
        GlobalMap
    """
    if not isinstance(input_seq, MarkerSequence):
        raise InputError(f"Expected a MarkerSequence, got {type(input_seq).__name__}")
    if batch_cores < 1:
        raise InputError(f"batch_cores must be at least 1, got {batch_cores}")
    if estimator is None:
        estimator = OutcrossHMMEstimator()

    batches = partition_batches(len(input_seq), size, overlap, around)

    if verbose:
        print(f"\n--- Starting Overlapping Batch Mapping ---")
        print(f"Input: {len(input_seq)} markers -> {len(batches)} batches (size {size}±{around}, overlap {overlap})")
        print(f"Processing with {batch_cores} batch workers x {phase_cores} phase workers...")

    worker_args = []
    for b_idx, (start_i, end_i) in enumerate(batches):
        worker_args.append((
            b_idx, start_i, end_i, input_seq.subsequence(start_i, end_i),
            order_fn, estimator, tol, phase_cores
        ))

    results = analysis_utils.pool_map(_process_single_batch, worker_args, batch_cores,
                                      desc="Processing Batches" if verbose else None)

    # Sort by batch index before anything else touches the results
    results = sorted(results, key=lambda x: x['batch_idx'])

    for result in results:
        analysis_utils.emit_warnings(result['issues'])

    stitched, issues = _stitch([r['batch_map'] for r in results], estimator, tol,
                               junction_window, phase_cores, verbose)
    analysis_utils.emit_warnings(issues)

    if final_reestimate:
        stitched = MarkerSequence(markers=stitched.markers, phases=stitched.phases, rf=stitched.rf,
                                  data=stitched.data, twopt=stitched.twopt)
        stitched = phase_search.map_sequence(stitched, estimator=estimator, tol=tol)
        global_map = GlobalMap.from_sequence(stitched, map_function=map_function, loglike_is_joint=True)
    else:
        global_map = GlobalMap.from_sequence(stitched, map_function=map_function,
                                             loglike_is_joint=len(batches) == 1)

    if verbose:
        joint = "joint" if global_map.loglike_is_joint else "sum of batches"
        print(f"Batch Mapping Complete. {len(global_map)} markers, {global_map.length_cm:.2f} cM, "
              f"log-likelihood {global_map.loglike:.3f} ({joint})")

    return global_map
