"""
Local reordering of a mapped sequence ("ripple").

A window of markers slides from left to right. At every position the
markers inside the window are permuted according to a rule, each candidate
order is mapped from scratch, and the best candidate replaces the current
order only if its likelihood is strictly higher. Accepted changes are seen
by the windows that follow, so windows are processed one after the other;
only the candidates of one window are evaluated in parallel.

Rules and number of candidates per window of w markers:
    "one"    - swap every pair of markers in window positions 1..w-1,
               position 0 anchors the window: (w-1)(w-2)/2
    "all"    - every permutation whose first marker precedes its last marker
               in the current order, except the current order: w!/2 - 1
    "random" - n_random random permutations (repeats and the current order
               are dropped)
"""

import numpy as np
import math
from itertools import combinations, permutations
from functools import partial

import analysis_utils
import phase_search
from map_errors import InputError
from marker_sequence import MarkerSequence

RIPPLE_RULES = ("one", "all", "random")
DEFAULT_WINDOW = 4
DEFAULT_N_RANDOM = 10

#%%
def candidate_count(rule, window, n_random=DEFAULT_N_RANDOM):
    """Number of candidate orders tested per window position"""
    if rule == "one":
        return (window-1)*(window-2)//2
    if rule == "all":
        return math.factorial(window)//2 - 1
    if rule == "random":
        return n_random

    raise InputError(f"Unknown ripple rule '{rule}', expected one of {RIPPLE_RULES}")

def window_candidates(window_markers, rule, n_random=DEFAULT_N_RANDOM, rng=None):
    """
    Candidate reorderings of the markers of one window, in a fixed
    enumeration order (which also breaks likelihood ties).
    """
    current = tuple(window_markers)
    w = len(current)

    if rule == "one":
        candidates = []
        for i, j in combinations(range(1, w), 2):
            swapped = list(current)
            swapped[i], swapped[j] = swapped[j], swapped[i]
            candidates.append(tuple(swapped))
        return candidates

    if rule == "all":
        identity = tuple(range(w))
        return [tuple(current[i] for i in perm) for perm in permutations(range(w))
                if perm[0] < perm[-1] and perm != identity]

    if rule == "random":
        if rng is None:
            rng = np.random.default_rng()
        seen = {current}
        candidates = []
        for _ in range(n_random):
            perm = tuple(current[i] for i in rng.permutation(w))
            if perm not in seen:
                seen.add(perm)
                candidates.append(perm)
        return candidates

    raise InputError(f"Unknown ripple rule '{rule}', expected one of {RIPPLE_RULES}")

def _map_candidate(order, template, estimator, tol, phase_cores):
    return phase_search.map_sequence_collecting(template.with_order(order), estimator=estimator,
                                                tol=tol, phase_cores=phase_cores)

#%%
def ripple_order_collecting(seq, window=DEFAULT_WINDOW, rule="one", n_random=DEFAULT_N_RANDOM,
                            tries=None, ripple_cores=1, phase_cores=1, estimator=None,
                            tol=phase_search.DEFAULT_TOLERANCE, seed=None, verbose=False):
    """
    Same as ripple_order, returning (MarkerSequence, [warning instances])
    instead of raising the warnings.
    """
    if not isinstance(seq, MarkerSequence):
        raise InputError(f"Expected a MarkerSequence, got {type(seq).__name__}")
    if rule not in RIPPLE_RULES:
        raise InputError(f"Unknown ripple rule '{rule}', expected one of {RIPPLE_RULES}")
    if window < 2 or window > len(seq):
        raise InputError(f"Window size must lie in [2, {len(seq)}], got {window}")
    if rule == "random" and n_random < 1:
        raise InputError(f"n_random must be at least 1, got {n_random}")
    if tries is not None and tries < 1:
        raise InputError(f"tries must be at least 1, got {tries}")
    if ripple_cores < 1:
        raise InputError(f"ripple_cores must be at least 1, got {ripple_cores}")

    issues = []
    current, map_issues = phase_search.map_sequence_collecting(seq, estimator=estimator, tol=tol,
                                                               phase_cores=phase_cores)
    issues.extend(map_issues)

    rng = np.random.default_rng(seed)
    sweeps_without_gain = 0
    sweep = 0

    while True:
        improved = False

        for start in range(len(current)-window+1):
            markers = current.markers
            candidates = window_candidates(markers[start:start+window], rule, n_random, rng)
            if not candidates:
                continue

            orders = [markers[:start]+cand+markers[start+window:] for cand in candidates]
            results = analysis_utils.pool_map(
                partial(_map_candidate, template=current, estimator=estimator, tol=tol,
                        phase_cores=phase_cores),
                orders, ripple_cores)

            for _, cand_issues in results:
                issues.extend(cand_issues)

            best = analysis_utils.argmax_first([mapped.loglike for mapped, _ in results])

            if best is not None and results[best][0].loglike > current.loglike:
                if verbose:
                    print(f"Ripple sweep {sweep}, window {start}: log-likelihood "
                          f"{current.loglike:.4f} -> {results[best][0].loglike:.4f}")
                current = results[best][0]
                improved = True

        sweep += 1

        if tries is None:
            break

        sweeps_without_gain = 0 if improved else sweeps_without_gain+1
        if sweeps_without_gain >= tries:
            break

    return current, issues

def ripple_order(seq, window=DEFAULT_WINDOW, rule="one", n_random=DEFAULT_N_RANDOM,
                 tries=None, ripple_cores=1, phase_cores=1, estimator=None,
                 tol=phase_search.DEFAULT_TOLERANCE, seed=None, verbose=False):
    """
    Improve the order of a sequence by sliding-window permutation search.

    Args:
        seq: MarkerSequence (mapped first if it is not yet).
        window: number of markers permuted at a time.
        rule: "one", "all" or "random" (see module docstring).
        n_random: candidates per window for rule "random".
        tries: None for a single sweep; otherwise keep sweeping until this many
            consecutive sweeps bring no improvement.
        ripple_cores: workers evaluating the candidates of one window.
        phase_cores: workers per candidate phase search.
        seed: seed for rule "random".

    Returns:
        Mapped MarkerSequence whose log-likelihood is at least that of the
        input order.
    """
    result, issues = ripple_order_collecting(seq, window=window, rule=rule, n_random=n_random,
                                             tries=tries, ripple_cores=ripple_cores,
                                             phase_cores=phase_cores, estimator=estimator,
                                             tol=tol, seed=seed, verbose=verbose)
    analysis_utils.emit_warnings(issues)

    return result

def _ripple_step(seq, window, kwargs):
    return ripple_order(seq, window=min(window, len(seq)), **kwargs)

def make_ripple_step(window=DEFAULT_WINDOW, **kwargs):
    """
    Ripple with fixed settings as a MarkerSequence -> MarkerSequence
    callable, e.g. for the order_fn of batch_merge.map_overlapping_batches.
    Sequences shorter than the window are rippled as a whole.
    """
    return partial(_ripple_step, window=window, kwargs=kwargs)
