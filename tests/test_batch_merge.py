import numpy as np
import pytest

from conftest import ScriptedEstimator, full_table
from batch_merge import stitch_batch_maps, map_overlapping_batches
from map_errors import InputError, MergeConflict, PartitionError, ConvergenceWarning, PhaseUndetermined
from marker_sequence import MarkerSequence, BatchMap, make_seq, PHASE_UNDETERMINED


def prefer_junction_phase(order, phases):
    """Scores 0 when the 4-5 interval carries phase 3, -1 otherwise"""
    for i in range(len(order)-1):
        if order[i] == 4 and order[i+1] == 5:
            return 0.0 if phases[i] == 3 else -1.0
    return -1.0


def flat_score(order, phases):
    return -1.0


def reverse_batch(seq):
    return seq.with_order(seq.markers[::-1])


def rotate_batch(seq):
    return seq.with_order(seq.markers[-1:]+seq.markers[:-1])


def drop_last_marker(seq):
    return seq.with_order(seq.markers[:-1])


def resolved(data, table, markers, phases, rf, loglike):
    return MarkerSequence(markers=markers, phases=phases, rf=rf, loglike=loglike, data=data, twopt=table)


@pytest.fixture
def table():
    return full_table(8)


class TestStitching:
    def test_reversed_batch_is_flipped(self, small_data, table):
        first = BatchMap(0, 0, 5, resolved(small_data, table, (0, 1, 2, 3, 4), (1, 1, 1, 1), (0.1,)*4, -10.0))
        second = BatchMap(1, 3, 8, resolved(small_data, table, (7, 6, 5, 4, 3), (1, 2, 3, 4),
                                            (0.01, 0.02, 0.03, 0.04), -12.0))

        gm = stitch_batch_maps([first, second], estimator=ScriptedEstimator(prefer_junction_phase))

        assert list(gm.markers) == list(range(8))
        assert list(gm.phases) == [1, 1, 1, 1, 3, 2, 1]
        assert np.allclose(gm.rf, [0.1, 0.1, 0.1, 0.1, 0.1, 0.02, 0.01])
        assert gm.loglike == -22.0
        assert not gm.loglike_is_joint
        assert np.all(np.diff(gm.positions) >= 0)

    def test_forward_batch_is_appended(self, small_data, table):
        first = BatchMap(0, 0, 5, resolved(small_data, table, (0, 1, 2, 3, 4), (1, 1, 1, 1), (0.1,)*4, -10.0))
        second = BatchMap(1, 3, 8, resolved(small_data, table, (3, 4, 5, 6, 7), (4, 4, 2, 2),
                                            (0.05,)*4, -12.0))

        gm = stitch_batch_maps([second, first], estimator=ScriptedEstimator(prefer_junction_phase))

        assert list(gm.markers) == list(range(8))
        assert list(gm.phases) == [1, 1, 1, 1, 3, 2, 2]

    def test_first_batch_is_oriented_towards_the_second(self, small_data, table):
        first = BatchMap(0, 0, 5, resolved(small_data, table, (4, 3, 2, 1, 0), (1, 2, 3, 4), (0.1,)*4, -10.0))
        second = BatchMap(1, 3, 8, resolved(small_data, table, (3, 4, 5, 6, 7), (1, 1, 1, 1), (0.1,)*4, -12.0))

        gm = stitch_batch_maps([first, second], estimator=ScriptedEstimator(prefer_junction_phase))

        assert list(gm.markers) == list(range(8))
        assert list(gm.phases[:4]) == [4, 3, 2, 1]

    def test_undetermined_junction(self, small_data, table):
        first = BatchMap(0, 0, 5, resolved(small_data, table, (0, 1, 2, 3, 4), (1, 1, 1, 1), (0.1,)*4, -10.0))
        second = BatchMap(1, 3, 8, resolved(small_data, table, (3, 4, 5, 6, 7), (4, 4, 2, 2),
                                            (0.05,)*4, -12.0))

        with pytest.warns(PhaseUndetermined) as record:
            gm = stitch_batch_maps([first, second], estimator=ScriptedEstimator(lambda order, phases: -np.inf))

        assert list(gm.markers) == list(range(8))
        assert list(gm.phases) == [1, 1, 1, 1, PHASE_UNDETERMINED, 2, 2]
        assert gm.rf[4] == 0.5
        assert gm.loglike == -22.0
        assert np.all(np.diff(gm.positions) >= 0)
        assert [w.message.marker for w in record if isinstance(w.message, PhaseUndetermined)] == [5]

    def test_single_batch_is_joint(self, small_data, table):
        only = BatchMap(0, 0, 3, resolved(small_data, table, (0, 1, 2), (1, 2), (0.1, 0.2), -5.0))

        gm = stitch_batch_maps([only], estimator=ScriptedEstimator(flat_score))

        assert gm.loglike_is_joint
        assert list(gm.markers) == [0, 1, 2]

    def test_overlap_not_at_either_end(self, small_data, table):
        first = BatchMap(0, 0, 5, resolved(small_data, table, (0, 1, 2, 3, 4), (1, 1, 1, 1), (0.1,)*4, -10.0))
        second = BatchMap(1, 3, 8, resolved(small_data, table, (3, 5, 4, 6, 7), (1, 1, 1, 1), (0.1,)*4, -12.0))

        with pytest.raises(MergeConflict) as excinfo:
            stitch_batch_maps([first, second], estimator=ScriptedEstimator(flat_score))

        assert excinfo.value.junction == (0, 1)

    def test_wrong_number_of_shared_markers(self, small_data, table):
        first = BatchMap(0, 0, 5, resolved(small_data, table, (0, 1, 2, 3, 4), (1, 1, 1, 1), (0.1,)*4, -10.0))
        second = BatchMap(1, 3, 8, resolved(small_data, table, (4, 5, 6, 7), (1, 1, 1), (0.1,)*3, -12.0))

        with pytest.raises(MergeConflict) as excinfo:
            stitch_batch_maps([first, second], estimator=ScriptedEstimator(flat_score))

        assert excinfo.value.junction == (0, 1)

    def test_unmapped_batch(self, small_data, table):
        unmapped = BatchMap(0, 0, 3, make_seq(small_data, (0, 1, 2), twopt=table))

        with pytest.raises(InputError):
            stitch_batch_maps([unmapped], estimator=ScriptedEstimator(flat_score))

    def test_nothing_to_stitch(self):
        with pytest.raises(InputError):
            stitch_batch_maps([])


class TestOverlappingBatches:
    def test_recovers_simulated_map(self, linkage_group20):
        data, phases, twopt = linkage_group20
        seq = make_seq(data, range(20), twopt=twopt)

        gm = map_overlapping_batches(seq, size=8, overlap=3, around=2)

        assert list(gm.markers) == list(range(20))
        assert list(gm.phases) == phases
        assert np.all(np.diff(gm.positions) >= 0)
        assert not gm.loglike_is_joint
        assert np.isfinite(gm.loglike)

    def test_batches_ordered_backwards_are_reoriented(self, linkage_group20):
        data, phases, twopt = linkage_group20
        seq = make_seq(data, range(20), twopt=twopt)

        gm = map_overlapping_batches(seq, size=8, overlap=3, around=2, order_fn=reverse_batch)

        assert list(gm.markers) == list(range(20))
        assert list(gm.phases) == phases

    def test_parallel_batches_match_serial(self, linkage_group20):
        data, _, twopt = linkage_group20
        seq = make_seq(data, range(20), twopt=twopt)

        serial = map_overlapping_batches(seq, size=8, overlap=3, around=2, batch_cores=1)
        parallel = map_overlapping_batches(seq, size=8, overlap=3, around=2, batch_cores=2, phase_cores=2)

        assert np.array_equal(serial.markers, parallel.markers)
        assert np.array_equal(serial.phases, parallel.phases)
        assert np.allclose(serial.rf, parallel.rf)
        assert serial.loglike == pytest.approx(parallel.loglike)

    def test_final_reestimate_gives_joint_likelihood(self, linkage_group20):
        data, _, twopt = linkage_group20
        seq = make_seq(data, range(20), twopt=twopt)

        gm = map_overlapping_batches(seq, size=8, overlap=3, around=2, final_reestimate=True)

        assert gm.loglike_is_joint
        assert np.isfinite(gm.loglike)

    def test_worker_warnings_reach_the_caller(self, small_data, table):
        est = ScriptedEstimator(flat_score, converged=False)
        seq = make_seq(small_data, range(8), twopt=table)

        with pytest.warns(ConvergenceWarning):
            gm = map_overlapping_batches(seq, size=4, overlap=2, around=1, batch_cores=2, estimator=est)

        assert list(gm.markers) == list(range(8))

    def test_scrambled_overlap_is_a_conflict(self, small_data, table):
        seq = make_seq(small_data, range(8), twopt=table)

        with pytest.raises(MergeConflict) as excinfo:
            map_overlapping_batches(seq, size=4, overlap=2, around=1, order_fn=rotate_batch,
                                    estimator=ScriptedEstimator(flat_score))

        assert excinfo.value.junction == (0, 1)

    def test_ordering_step_must_keep_markers(self, small_data, table):
        seq = make_seq(small_data, range(8), twopt=table)

        with pytest.raises(InputError):
            map_overlapping_batches(seq, size=4, overlap=2, around=1, order_fn=drop_last_marker,
                                    estimator=ScriptedEstimator(flat_score))

    def test_bad_layout_fails_before_mapping(self, small_data, table):
        est = ScriptedEstimator(flat_score)
        seq = make_seq(small_data, range(8), twopt=table)

        with pytest.raises(PartitionError):
            map_overlapping_batches(seq, size=4, overlap=4, around=1, estimator=est)

        assert est.calls == []

    def test_two_marker_batch_with_undetermined_phase(self, small_data, table):
        def score(order, phases):
            return -np.inf if set(order) == {5, 6} else -1.0

        seq = make_seq(small_data, range(7), twopt=table)

        # segments [3, 3, 1] with overlap 1: the last batch is markers (5, 6)
        with pytest.warns(PhaseUndetermined):
            gm = map_overlapping_batches(seq, size=3, overlap=1, around=0, estimator=ScriptedEstimator(score))

        assert list(gm.markers) == list(range(7))
        assert len(gm.phases) == 6
        assert gm.loglike == -np.inf
