import math

from map_errors import PartitionError

#%%
def _check_int(name, value):
    if isinstance(value, bool) or int(value) != value:
        raise PartitionError(f"{name} must be an integer, got {value!r}")
    return int(value)

def segment_lengths(n, size, around):
    """
    Split n markers into the smallest number of consecutive segments whose
    lengths lie in [size-around, size+around], as evenly as possible.

    When no even split fits (e.g. around=0 and size does not divide n), every
    segment but the last gets size-around markers and the last one takes
    the (shorter) remainder.
    """
    low = size-around
    high = size+around

    num_segments = math.ceil(n/high)

    if num_segments*low <= n:
        base, extra = divmod(n, num_segments)
        return [base+1]*extra + [base]*(num_segments-extra)

    return [low]*(num_segments-1) + [n-low*(num_segments-1)]

def partition_batches(n, size, overlap, around=0):
    """
    Overlapping batch layout for a sequence of n markers.

    size is the number of new markers each batch brings (its own segment),
    around the tolerance on that number, and overlap the number of markers
    every batch after the first shares with the end of its predecessor.

    Returns a list of (start, end) ranges into the sequence. Batch 0 is its
    own segment; batch i > 0 is its segment extended overlap markers to the
    left. The ranges cover [0, n) and consecutive ranges overlap by exactly
    overlap markers.

    Example: n=100, size=50, overlap=30, around=10 -> [(0, 50), (20, 100)]

    Raises PartitionError when the request cannot be met.
    """
    n = _check_int("n", n)
    size = _check_int("size", size)
    overlap = _check_int("overlap", overlap)
    around = _check_int("around", around)

    if n < 2:
        raise PartitionError(f"Need at least 2 markers to build batches, got {n}")
    if size < 1:
        raise PartitionError(f"Batch size must be positive, got {size}")
    if around < 0 or around >= size:
        raise PartitionError(f"around must lie in [0, size), got {around} for size {size}")
    if overlap < 1:
        raise PartitionError(f"overlap must be at least 1 so batches can be oriented, got {overlap}")
    if overlap >= size:
        raise PartitionError(f"overlap ({overlap}) must be smaller than the batch size ({size})")
    if n < size-around:
        raise PartitionError(f"{n} markers are not enough for one batch of {size}±{around}")

    segments = segment_lengths(n, size, around)

    if len(segments) > 1 and segments[0] < overlap:
        raise PartitionError(f"First batch has {segments[0]} markers, fewer than the overlap of {overlap}")

    batches = []
    seg_start = 0
    for i, length in enumerate(segments):
        seg_end = seg_start+length
        start = seg_start if i == 0 else seg_start-overlap
        batches.append((start, seg_end))
        seg_start = seg_end

    return batches

def batch_overlaps(batches):
    """Number of markers shared by each pair of consecutive batches"""
    return [prev[1]-curr[0] for prev, curr in zip(batches[:-1], batches[1:])]
