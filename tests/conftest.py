import numpy as np
import pytest

from multipoint_hmm import MultipointResult
from twopoint import TwoPointTable, TwoPointEntry, rf_2pts
from simulate_outcross import simulate_outcross, simulate_linkage_group

# ---------------------------------------------------------------------------
# Scripted estimator: likelihood comes from a scoring function so tests can
# decide exactly which phase vector / order should win
# ---------------------------------------------------------------------------

class ScriptedEstimator:
    """
    Stand-in for the multipoint estimator.

    score_fn(order, phases) -> log-likelihood. Every call is recorded as
    (order, phases) when running in the calling process.
    """
    def __init__(self, score_fn, converged=True, rf=0.1):
        self.score_fn = score_fn
        self.converged = converged
        self.rf = rf
        self.calls = []

    def estimate(self, genotype_rows, marker_types, order, phases, tol=1e-4, rf_init=None):
        order = tuple(order)
        phases = tuple(int(p) for p in phases)
        self.calls.append((order, phases))
        return MultipointResult(np.full(len(order)-1, self.rf), float(self.score_fn(order, phases)),
                                self.converged)


def full_table(n_mar, lod_tolerance=np.inf):
    """Two-point table offering all four phases for every pair"""
    entries = {}
    for i in range(n_mar):
        for j in range(i+1, n_mar):
            entries[(i, j)] = [TwoPointEntry(p, 0.1, 3.0) for p in (1, 2, 3, 4)]
    return TwoPointTable(entries, n_mar=n_mar, lod_tolerance=lod_tolerance)


@pytest.fixture(scope="session")
def small_data():
    """Eight fully informative markers, only used where genotypes are not scored"""
    data, _ = simulate_linkage_group(8, 20, rf=0.1, seed=11)
    return data


@pytest.fixture(scope="session")
def informative_group():
    """Six fully informative (A.1) markers, 300 individuals, rf 0.1, known phases"""
    phases = [1, 4, 2, 3, 1]
    data = simulate_outcross(["A.1"]*6, [0.1]*5, phases, 300, seed=2024)
    return data, phases


@pytest.fixture(scope="session")
def linkage_group20():
    """Twenty A.1 markers, 200 individuals, rf 0.08, with their two-point table"""
    data, phases = simulate_linkage_group(20, 200, rf=0.08, seed=5)
    return data, phases, rf_2pts(data)
