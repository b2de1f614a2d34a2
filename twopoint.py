"""
Two-point (pairwise) linkage information.

For every marker pair the table keeps one entry per linkage phase with the
pairwise recombination fraction and LOD score. Map construction only uses
it to propose candidate phases for the next marker and to seed the
multipoint estimator; the final phase decision is always multipoint.
"""

import numpy as np
from itertools import combinations
from functools import partial
from typing import NamedTuple

import analysis_utils
from map_errors import InputError, ConvergenceWarning
from marker_sequence import ALL_PHASES
from multipoint_hmm import OutcrossHMMEstimator, null_loglike

DEFAULT_LOD_TOLERANCE = 0.005

class TwoPointEntry(NamedTuple):
    phase: int
    rf: float
    lod: float

#%%
class TwoPointTable:
    """
    Lookup of two-point entries by marker pair (order of the pair does not
    matter).

    phases(pair) gives the candidate phases for the pair: the entries whose
    LOD is within lod_tolerance of the best LOD for that pair and which pass
    the max_rf / min_lod filters. If nothing passes, every entry is a
    candidate. Candidates always come back in ascending phase code, which is
    the enumeration order used to break likelihood ties downstream.
    """
    def __init__(self, entries, n_mar=None, lod_tolerance=DEFAULT_LOD_TOLERANCE,
                 min_lod=0.0, max_rf=0.5):
        self._entries = {}

        for pair, pair_entries in entries.items():
            key = self._key(pair)
            parsed = [TwoPointEntry(int(e[0]), float(e[1]), float(e[2])) for e in pair_entries]
            if not parsed:
                raise InputError(f"No two-point entries given for pair {pair}")
            self._entries[key] = sorted(parsed, key=lambda e: e.phase)

        if n_mar is None:
            n_mar = 1+max((max(k) for k in self._entries), default=-1)

        self.n_mar = n_mar
        self.lod_tolerance = lod_tolerance
        self.min_lod = min_lod
        self.max_rf = max_rf

    @staticmethod
    def _key(pair):
        a, b = int(pair[0]), int(pair[1])
        return (a, b) if a <= b else (b, a)

    def __contains__(self, pair):
        return self._key(pair) in self._entries

    def __len__(self):
        return len(self._entries)

    def entries(self, pair):
        try:
            return list(self._entries[self._key(pair)])
        except KeyError:
            raise KeyError(f"No two-point information for markers {pair}") from None

    def phases(self, pair):
        entries = self.entries(pair)
        best_lod = max(e.lod for e in entries)

        relevant = [e for e in entries if best_lod-e.lod < self.lod_tolerance]
        selected = [e for e in relevant if e.rf <= self.max_rf and e.lod >= self.min_lod]

        if not selected:
            return entries

        return selected

    def get(self, pair, phase):
        """Entry of the pair under the given phase, or None"""
        key = self._key(pair)
        if key not in self._entries:
            return None

        for e in self._entries[key]:
            if e.phase == phase:
                return e

        return None

    def best(self, pair):
        """Entry with the highest LOD (lowest phase code on ties)"""
        entries = self.entries(pair)
        return entries[analysis_utils.argmax_first([e.lod for e in entries])]

    def rf_matrix(self, markers):
        """
        Symmetric matrix of best-phase recombination fractions between the
        given markers (0.5 for pairs without information)
        """
        markers = list(markers)
        n = len(markers)
        mat = np.full((n, n), 0.5)
        np.fill_diagonal(mat, 0.0)

        for i, j in combinations(range(n), 2):
            if (markers[i], markers[j]) in self:
                mat[i, j] = mat[j, i] = self.best((markers[i], markers[j])).rf

        return mat

    def lod_matrix(self, markers):
        """Symmetric matrix of best-phase LOD scores between the given markers"""
        markers = list(markers)
        n = len(markers)
        mat = np.zeros((n, n))

        for i, j in combinations(range(n), 2):
            if (markers[i], markers[j]) in self:
                mat[i, j] = mat[j, i] = self.best((markers[i], markers[j])).lod

        return mat

    def __repr__(self):
        return f"<TwoPointTable: {len(self)} pairs>"

#%%
# =============================================================================
# BUILDING THE TABLE
# =============================================================================

def _fit_pair(pair, data, estimator, tol):
    """
    Fit one marker pair under all four phases.
    Returns (pair, entries, converged)
    """
    rows = data.genotype_rows(pair)
    types = data.marker_types(pair)

    null = null_loglike(estimator, rows, types)

    entries = []
    converged = True
    for phase in ALL_PHASES:
        fit = estimator.estimate(rows, types, pair, [int(phase)], tol)
        converged = converged and fit.converged
        entries.append(TwoPointEntry(int(phase), float(fit.rf[0]),
                                     float(analysis_utils.lod_from_loglikes(fit.loglike, null))))

    return (pair, entries, converged)

def rf_2pts(data, markers=None, estimator=None, tol=1e-4, cores=1, verbose=False, **table_kwargs):
    """
    Two-point analysis of every pair among markers (all markers by default).

    Each pair is fitted with the multipoint estimator restricted to the two
    markers, once per phase; LOD = log10 likelihood ratio against rf = 0.5.
    Pairs are spread over cores workers. Extra keyword arguments go to the
    TwoPointTable constructor.
    """
    if markers is None:
        markers = range(data.n_mar)
    markers = list(markers)

    if len(markers) < 2:
        raise InputError("Two-point analysis needs at least 2 markers")
    if estimator is None:
        estimator = OutcrossHMMEstimator()

    pairs = list(combinations(markers, 2))

    if verbose:
        print(f"Two-point analysis of {len(pairs)} pairs with {cores} workers...")

    results = analysis_utils.pool_map(partial(_fit_pair, data=data, estimator=estimator, tol=tol),
                                      pairs, cores, desc="Two-point pairs" if verbose else None)

    entries = {}
    for pair, pair_entries, converged in results:
        entries[pair] = pair_entries
        if not converged:
            analysis_utils.emit_warnings([ConvergenceWarning(
                f"Two-point estimation for markers {pair} did not converge within tol={tol}",
                marker=pair[1])])

    return TwoPointTable(entries, n_mar=data.n_mar, **table_kwargs)
