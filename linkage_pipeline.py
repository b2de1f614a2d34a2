import phase_search
import batch_merge
import ripple_ordering
from map_errors import InputError
from marker_sequence import MarkerSequence, GlobalMap

#%%
def build_linkage_map(input_seq,
                      # Seed ordering
                      seed_order=None,
                      seed_replicates=10,
                      seed_cores=1,
                      # Batch layout
                      size=50,
                      overlap=15,
                      around=5,
                      # Ripple refinement
                      ripple_window=None,
                      ripple_rule="one",
                      ripple_n_random=10,
                      ripple_tries=None,
                      ripple_cores=1,
                      # Parallelization
                      batch_cores=1,
                      phase_cores=1,
                      # Estimation
                      estimator=None,
                      tol=phase_search.DEFAULT_TOLERANCE,
                      map_function=batch_merge.DEFAULT_MAP_FUNCTION,
                      final_reestimate=False,
                      seed=None,
                      verbose=False):
    """
    Build the linkage map of one linkage group.

    1. If seed_order is given (a seed_order(markers, replicates, cores)
       callable such as record_ordering.make_record_seed), the markers are
       reordered with it first.
    2. Sequences of at most size+around markers are mapped in one piece,
       longer ones in overlapping batches which are stitched together.
    3. If ripple_window is set, each piece (whole sequence or batch) is
       refined by a ripple pass before it is mapped (with the window cut
       down to the piece length for short batches). ripple_cores workers
       evaluate the candidates of one window.

    Returns a GlobalMap.
    """
    if not isinstance(input_seq, MarkerSequence):
        raise InputError(f"Expected a MarkerSequence, got {type(input_seq).__name__}")

    seq = input_seq

    if seed_order is not None:
        order = tuple(seed_order(seq.markers, seed_replicates, seed_cores))
        if sorted(order) != sorted(seq.markers):
            raise InputError("Seed ordering returned a different set of markers")
        seq = seq.with_order(order)
        if verbose:
            print(f"Seed order: {[seq.data.marker_names[m] for m in seq.markers]}")

    order_fn = None
    if ripple_window is not None:
        order_fn = ripple_ordering.make_ripple_step(window=ripple_window, rule=ripple_rule,
                                                    n_random=ripple_n_random, tries=ripple_tries,
                                                    ripple_cores=ripple_cores,
                                                    phase_cores=phase_cores, estimator=estimator,
                                                    tol=tol, seed=seed)

    if len(seq) <= size+around:
        if verbose:
            print(f"Mapping {len(seq)} markers in a single piece")
        if order_fn is not None:
            seq = order_fn(seq)
        mapped = phase_search.map_sequence(seq, estimator=estimator, tol=tol,
                                           phase_cores=phase_cores, verbose=verbose)
        return GlobalMap.from_sequence(mapped, map_function=map_function)

    return batch_merge.map_overlapping_batches(seq, size=size, overlap=overlap, around=around,
                                               order_fn=order_fn,
                                               batch_cores=batch_cores,
                                               phase_cores=phase_cores,
                                               estimator=estimator,
                                               tol=tol,
                                               map_function=map_function,
                                               final_reestimate=final_reestimate,
                                               verbose=verbose)
