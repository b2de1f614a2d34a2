"""
Error and warning types raised while building linkage maps.

Structural problems (bad input, impossible partitions, batches that
cannot be stitched) are exceptions and abort the call. Numerical hiccups
(an estimator that did not converge, a junction whose phase could not be
resolved) are warnings: the best result found so far is kept.

Warnings raised inside pool workers are shipped back to the parent
process, so the tagged types below reduce with their extra fields.
"""


class MappingError(Exception):
    """Base class for fatal map-construction errors."""


class InputError(MappingError, ValueError):
    """Malformed marker sequence (too few markers, mismatched vectors...)."""


class PartitionError(MappingError, ValueError):
    """No overlapping batch layout satisfies the size/overlap/tolerance request."""


class MergeConflict(MappingError):
    """
    Two consecutive batch maps could not be reconciled.

    junction is the pair of batch indices (earlier, later) that failed.
    """
    def __init__(self, message, junction):
        super().__init__(message)
        self.junction = junction

    def __reduce__(self):
        return (self.__class__, (str(self), self.junction))


class _TaggedWarning(UserWarning):
    def __init__(self, message, marker=None, step=None):
        super().__init__(message)
        self.marker = marker
        self.step = step

    def __reduce__(self):
        return (self.__class__, (str(self), self.marker, self.step))


class ConvergenceWarning(_TaggedWarning):
    """The multipoint estimator stopped before reaching its tolerance."""


class PhaseUndetermined(_TaggedWarning):
    """Every phase candidate for a junction gave a non-finite likelihood."""
