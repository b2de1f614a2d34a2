"""
In-memory container for outcross (full-sib F1) mapping data, plus
detection and collapse of redundant markers into bins.

Genotypes are stored as an (individuals x markers) integer matrix. Code 0
means missing; code k >= 1 is the k-th phenotype class of the marker's
segregation type. Each class lists the inheritance states compatible with
the observation, where a state is 2*p + m with p the allele index received
from the first parent and m the one received from the second.
"""

import numpy as np

from map_errors import InputError

# Phenotype classes per segregation type, in genotype code order (1, 2, ...)
SEGREGATION_CLASSES = {
    # ab x cd : ac, ad, bc, bd
    "A.1": [(0,), (1,), (2,), (3,)],
    # ab x ao : ab, a, b
    "B1.5": [(2,), (0, 1), (3,)],
    # ao x ab : ab, a, b
    "B2.6": [(1,), (0, 2), (3,)],
    # ab x ab : a, ab, b
    "B3.7": [(0,), (1, 2), (3,)],
    # ao x ao : a, o
    "C.8": [(0, 1, 2), (3,)],
    # ab x aa : a, ab
    "D1.10": [(0, 1), (2, 3)],
    # aa x ab : a, ab
    "D2.15": [(0, 2), (1, 3)],
}

#%%
class OutcrossData:
    """
    Genotype matrix and segregation types for one outcross population.

    The genotype matrix is copied and made read-only: it is shared by every
    map-construction call (and every pool worker) and nothing may modify it.
    """
    def __init__(self, geno, segr_type, marker_names=None):
        geno = np.asarray(geno)

        if geno.ndim != 2:
            raise InputError(f"Genotype matrix must be 2D (individuals x markers), got shape {geno.shape}")
        if geno.size and not np.all(np.equal(np.mod(geno, 1), 0)):
            raise InputError("Genotype codes must be integers")

        geno = np.array(geno, dtype=np.int64)
        n_ind, n_mar = geno.shape

        segr_type = list(segr_type)
        if len(segr_type) != n_mar:
            raise InputError(f"Got {len(segr_type)} segregation types for {n_mar} markers")

        unknown = sorted(set(segr_type) - set(SEGREGATION_CLASSES))
        if unknown:
            raise InputError(f"Unknown segregation types {unknown}, expected one of {sorted(SEGREGATION_CLASSES)}")

        if marker_names is None:
            marker_names = [f"M{j+1}" for j in range(n_mar)]
        marker_names = list(marker_names)
        if len(marker_names) != n_mar:
            raise InputError(f"Got {len(marker_names)} marker names for {n_mar} markers")

        for j in range(n_mar):
            n_classes = len(SEGREGATION_CLASSES[segr_type[j]])
            col = geno[:, j]
            if np.any(col < 0) or np.any(col > n_classes):
                raise InputError(f"Marker {marker_names[j]} ({segr_type[j]}) has genotype codes outside 0..{n_classes}")

        geno.setflags(write=False)

        self.geno = geno
        self.segr_type = segr_type
        self.marker_names = marker_names

    @property
    def n_ind(self):
        return self.geno.shape[0]

    @property
    def n_mar(self):
        return self.geno.shape[1]

    def genotype_rows(self, order):
        """
        Genotypes of the markers in order, one row per marker
        (shape: len(order) x n_ind)
        """
        return self.geno[:, list(order)].T

    def marker_types(self, order):
        return [self.segr_type[m] for m in order]

    def missing_counts(self):
        """Number of missing genotype calls per marker"""
        return np.sum(self.geno == 0, axis=0)

    def __repr__(self):
        return f"<OutcrossData: {self.n_ind} individuals, {self.n_mar} markers>"

#%%
# =============================================================================
# REDUNDANT MARKER BINS
# =============================================================================

def find_bins(data, exact=True):
    """
    Group markers carrying the same information into bins.

    Two markers share a bin if they have the same segregation type and
    the same genotype at every individual (exact=True), or at every
    individual where both are called (exact=False). Each marker is
    compared against the first member of the existing bins, in marker
    order.

    Returns a dict {representative: [members]} in order of first
    appearance, where the representative is the member with the least
    missing data (lowest index on ties).
    """
    groups = []

    for j in range(data.n_mar):
        col = data.geno[:, j]

        for group in groups:
            head = group[0]
            if data.segr_type[head] != data.segr_type[j]:
                continue

            other = data.geno[:, head]
            if exact:
                same = np.array_equal(col, other)
            else:
                both_called = (col != 0) & (other != 0)
                same = np.array_equal(col[both_called], other[both_called])

            if same:
                group.append(j)
                break
        else:
            groups.append([j])

    missing = data.missing_counts()

    bins = {}
    for group in groups:
        representative = min(group, key=lambda m: (missing[m], m))
        bins[representative] = group

    return bins

def create_data_bins(data, bins):
    """
    New dataset where every bin is collapsed onto its representative marker
    """
    if data.n_mar < 2:
        raise InputError("There must be at least two markers to proceed with analysis")

    keep = list(bins.keys())
    bad = [m for m in keep if m < 0 or m >= data.n_mar]
    if bad:
        raise InputError(f"Bin representatives {bad} are not markers of this dataset")

    return OutcrossData(data.geno[:, keep],
                        [data.segr_type[m] for m in keep],
                        [data.marker_names[m] for m in keep])
