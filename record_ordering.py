"""
RECORD (REcombination Counting and ORDering) seed orders.

Orders markers by minimising the summed two-point recombination fraction
between adjacent markers: markers are inserted one at a time, in random
order, where they add the least cost, and the result is then polished by
reversing segments while that lowers the cost. The best of several random
replicates is kept.

Used only to produce an initial order for map construction; any callable
with the seed_order(markers, replicates, cores) signature can replace it.
"""

import numpy as np
from functools import partial

import analysis_utils
from map_errors import InputError
from marker_sequence import MarkerSequence

DEFAULT_TIMES = 10

#%%
def order_cost(order, cost):
    """Summed cost between adjacent entries of order"""
    order = np.asarray(order)
    if len(order) < 2:
        return 0.0
    return float(np.sum(cost[order[:-1], order[1:]]))

def _cheapest_insertion(insertion, cost):
    order = [int(insertion[0])]

    for m in insertion[1:]:
        m = int(m)
        best_pos = 0
        best_delta = cost[m, order[0]]

        for pos in range(1, len(order)+1):
            if pos == len(order):
                delta = cost[order[-1], m]
            else:
                delta = cost[order[pos-1], m]+cost[m, order[pos]]-cost[order[pos-1], order[pos]]
            if delta < best_delta:
                best_pos = pos
                best_delta = delta

        order.insert(best_pos, m)

    return order

def _reverse_segments(order, cost):
    """
    Reverse order[i:j+1] whenever that lowers the cost, until no reversal
    helps. The cost inside a reversed segment is unchanged, only its two
    boundaries move.
    """
    n = len(order)
    improved = True

    while improved:
        improved = False
        for i in range(n-1):
            for j in range(i+1, n):
                delta = 0.0
                if i > 0:
                    delta += cost[order[i-1], order[j]]-cost[order[i-1], order[i]]
                if j < n-1:
                    delta += cost[order[i], order[j+1]]-cost[order[j], order[j+1]]
                if delta < -1e-12:
                    order[i:j+1] = order[i:j+1][::-1]
                    improved = True

    return order

def _record_replicate(rep_seed, cost):
    rng = np.random.default_rng(rep_seed)
    insertion = rng.permutation(cost.shape[0])

    order = _cheapest_insertion(insertion, cost)
    order = _reverse_segments(order, cost)

    return order, order_cost(order, cost)

def record_indices(cost, times=DEFAULT_TIMES, cores=1, seed=None):
    """
    RECORD on a symmetric cost matrix. Returns (best order as indices into
    the matrix, its cost). Ties between replicates go to the earliest one.
    The order is oriented so that its first index is smaller than its last.
    """
    cost = np.asarray(cost, dtype=float)
    if cost.ndim != 2 or cost.shape[0] != cost.shape[1]:
        raise InputError(f"Cost matrix must be square, got shape {cost.shape}")
    if times < 1:
        raise InputError(f"times must be at least 1, got {times}")

    if cost.shape[0] < 3:
        return list(range(cost.shape[0])), order_cost(list(range(cost.shape[0])), cost)

    rng = np.random.default_rng(seed)
    rep_seeds = [int(s) for s in rng.integers(0, 2**32, size=times)]

    results = analysis_utils.pool_map(partial(_record_replicate, cost=cost), rep_seeds, cores)

    best = int(np.argmin([c for _, c in results]))
    order = results[best][0]
    if order[0] > order[-1]:
        order = order[::-1]

    return order, results[best][1]

def record_order(seq, times=DEFAULT_TIMES, cores=1, seed=None, verbose=False):
    """
    Reorder the markers of seq with RECORD using the two-point
    recombination fractions of seq.twopt. Returns an unmapped sequence.
    """
    if not isinstance(seq, MarkerSequence):
        raise InputError(f"Expected a MarkerSequence, got {type(seq).__name__}")
    if seq.twopt is None:
        raise InputError("RECORD needs a two-point table")

    markers = list(seq.markers)
    cost = seq.twopt.rf_matrix(markers)

    order, total = record_indices(cost, times=times, cores=cores, seed=seed)

    if verbose:
        print(f"RECORD: best of {times} replicates, summed adjacent rf {total:.4f}")

    return seq.with_order([markers[i] for i in order])

def make_record_seed(data, twopt, seed=None):
    """
    RECORD as a seed-order strategy: seed_order(markers, replicates, cores)
    returns the best order found for the given markers.
    """
    def seed_order(markers, replicates=DEFAULT_TIMES, cores=1):
        seq = MarkerSequence(markers=tuple(markers), data=data, twopt=twopt)
        return record_order(seq, times=replicates, cores=cores, seed=seed).markers

    return seed_order
