import numpy as np
import math
import warnings
from multiprocess import Pool, current_process
from multiprocess.pool import ThreadPool
from tqdm import tqdm

# Largest rf fed to a map function, keeps distances finite for unlinked junctions
MAX_MAPPABLE_RF = 0.5 - 1e-6

#%%
# =============================================================================
# 1. WORKER POOL FAN-OUT
# =============================================================================

def pool_map(func, items, num_processes=1, desc=None):
    """
    Apply func to every element of items using at most num_processes
    workers and return the results in the order of items.

    A single worker runs everything in the calling process. From a normal
    process a multiprocess Pool is used (dill pickling, so closures are
    fine). Pool workers are daemonic and cannot fork children of their own,
    so from inside one we fall back to a ThreadPool; this is what lets
    batch level and phase level parallelism nest.

    If desc is given a tqdm progress bar with that label is shown.
    """
    items = list(items)
    num_workers = max(1, min(int(num_processes), len(items)))

    if num_workers == 1:
        iterator = map(func, items)
        if desc is not None:
            iterator = tqdm(iterator, total=len(items), desc=desc)
        return list(iterator)

    pool_class = ThreadPool if current_process().daemon else Pool

    with pool_class(num_workers) as pool:
        # imap keeps submission order, so callers can reduce deterministically
        iterator = pool.imap(func, items)
        if desc is not None:
            iterator = tqdm(iterator, total=len(items), desc=desc)
        results = list(iterator)

    return results

def emit_warnings(messages, stacklevel=3):
    """
    Raise a list of collected warning instances in the current process,
    in the order they were collected.
    """
    for message in messages:
        warnings.warn(message, stacklevel=stacklevel)

def argmax_first(values):
    """
    Index of the largest finite value, ties going to the earliest
    position. Returns None if no value is finite.
    """
    values = np.asarray(values, dtype=float)
    finite = np.isfinite(values)

    if not np.any(finite):
        return None

    # np.argmax already returns the first occurrence of the maximum
    return int(np.argmax(np.where(finite, values, -np.inf)))

#%%
# =============================================================================
# 2. MAP FUNCTIONS
# =============================================================================

def haldane(rf):
    """
    Haldane map function, recombination fraction -> distance in cM
    """
    rf = np.clip(np.asarray(rf, dtype=float), 0.0, MAX_MAPPABLE_RF)

    return -50.0*np.log(1.0-2.0*rf)

def kosambi(rf):
    """
    Kosambi map function, recombination fraction -> distance in cM
    """
    rf = np.clip(np.asarray(rf, dtype=float), 0.0, MAX_MAPPABLE_RF)

    return 25.0*np.log((1.0+2.0*rf)/(1.0-2.0*rf))

MAP_FUNCTIONS = {"haldane": haldane, "kosambi": kosambi}

def get_map_function(name):
    """
    Look up a map function by name ("haldane" or "kosambi")
    """
    try:
        return MAP_FUNCTIONS[name]
    except KeyError:
        raise ValueError(f"Unknown map function '{name}', expected one of {sorted(MAP_FUNCTIONS)}") from None

def cumulative_positions(rf_vec, map_function="kosambi"):
    """
    Turn a vector of adjacent recombination fractions into cumulative
    marker positions in cM, starting at 0 for the first marker.

    Negative entries (not yet estimated) contribute no distance, so
    the positions are always non-decreasing.
    """
    distances = get_map_function(map_function)(rf_vec)

    return np.concatenate([[0.0], np.cumsum(distances)])

def lod_from_loglikes(loglike, null_loglike):
    """
    Convert a pair of natural log likelihoods into a LOD score (log10)
    """
    return (loglike-null_loglike)/math.log(10)
