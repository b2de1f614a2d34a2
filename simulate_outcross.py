"""
File which contains functions that simulate the F1 progeny of an outcross
between two heterozygous parents, given the segregation type of every
marker, the linkage phases between adjacent markers and the recombination
fractions between them
"""
import numpy as np

from map_errors import InputError
from marker_sequence import PhaseCode, PHASE_UNDETERMINED
from outcross_data import OutcrossData, SEGREGATION_CLASSES

#%%
def _state_to_code(segr_type):
    """
    Array mapping each inheritance state (0..3) to the genotype code
    observed for a marker of this segregation type
    """
    codes = np.zeros(4, dtype=np.int64)

    for code, states in enumerate(SEGREGATION_CLASSES[segr_type], start=1):
        codes[list(states)] = code

    return codes

def simulate_inheritance(rf, phases, n_ind, rng):
    """
    Simulate meiosis in both parents for n_ind offspring along a chain of
    markers. Returns an (n_ind x n_markers) array of inheritance states
    2*p + m, where p (m) is the allele index received from the first
    (second) parent.

    A crossover between two markers happens with probability rf in each
    parent independently; a repulsion phase flips which allele index
    the same parental chromosome carries at the next marker.
    """
    n_mar = len(rf)+1

    p = np.empty((n_ind, n_mar), dtype=np.int64)
    m = np.empty((n_ind, n_mar), dtype=np.int64)

    p[:, 0] = rng.integers(0, 2, size=n_ind)
    m[:, 0] = rng.integers(0, 2, size=n_ind)

    for k in range(n_mar-1):
        flip_p, flip_m = PhaseCode(phases[k]).flips

        cross_p = (rng.random(n_ind) < rf[k]).astype(np.int64)
        cross_m = (rng.random(n_ind) < rf[k]).astype(np.int64)

        p[:, k+1] = p[:, k] ^ flip_p ^ cross_p
        m[:, k+1] = m[:, k] ^ flip_m ^ cross_m

    return 2*p+m

def simulate_outcross(segr_type, rf, phases, n_ind, missing_rate=0.0, seed=None, marker_names=None):
    """
    Simulate genotypes of an outcross F1 population.

    segr_type: segregation type of each marker, in map order
    rf: recombination fraction between adjacent markers
    phases: linkage phase (PhaseCode) between adjacent markers
    missing_rate: probability that any single genotype call is missing
    """
    segr_type = list(segr_type)
    n_mar = len(segr_type)

    if n_mar < 1:
        raise InputError("Need at least one marker to simulate")
    if len(rf) != n_mar-1 or len(phases) != n_mar-1:
        raise InputError(f"Need {n_mar-1} recombination fractions and phases for {n_mar} markers")
    if any(int(p) == PHASE_UNDETERMINED for p in phases):
        raise InputError("Simulation needs every linkage phase to be determined")
    if any((r < 0 or r > 0.5) for r in rf):
        raise InputError("Recombination fractions must lie in [0, 0.5]")

    rng = np.random.default_rng(seed)

    states = simulate_inheritance(rf, phases, n_ind, rng)

    geno = np.empty((n_ind, n_mar), dtype=np.int64)
    for j, t in enumerate(segr_type):
        geno[:, j] = _state_to_code(t)[states[:, j]]

    if missing_rate > 0:
        geno[rng.random((n_ind, n_mar)) < missing_rate] = 0

    return OutcrossData(geno, segr_type, marker_names)

def simulate_linkage_group(n_mar, n_ind, rf=0.05, segr_type="A.1", missing_rate=0.0, seed=None):
    """
    Simulate one linkage group with evenly spaced markers and random
    linkage phases.

    Returns (OutcrossData, true phases)
    """
    rng = np.random.default_rng(seed)

    if isinstance(segr_type, str):
        segr_type = [segr_type]*n_mar

    phases = [int(p) for p in rng.integers(1, 5, size=n_mar-1)]
    data = simulate_outcross(segr_type, [rf]*(n_mar-1), phases, n_ind,
                             missing_rate=missing_rate, seed=int(rng.integers(0, 2**32)))

    return data, phases
