import numpy as np
import pytest

from twopoint import TwoPointTable, TwoPointEntry, rf_2pts
from map_errors import InputError


@pytest.fixture
def table():
    return TwoPointTable({
        (2, 0): [(3, 0.30, 2.0), (1, 0.10, 5.0), (2, 0.10, 4.998)],
        (0, 1): [(4, 0.20, 1.0)],
    }, n_mar=3)


class TestTwoPointTable:
    def test_pairs_are_unordered(self, table):
        assert (0, 2) in table
        assert (2, 0) in table
        assert (1, 2) not in table
        assert table.get((0, 2), 2) == table.get((2, 0), 2) == TwoPointEntry(2, 0.10, 4.998)
        assert len(table) == 2

    def test_entries_sorted_by_phase(self, table):
        assert [e.phase for e in table.entries((2, 0))] == [1, 2, 3]

    def test_missing_pair(self, table):
        assert table.get((1, 2), 1) is None
        assert table.get((0, 2), 4) is None
        with pytest.raises(KeyError):
            table.entries((1, 2))

    def test_candidate_phases_near_best_lod(self, table):
        assert [e.phase for e in table.phases((0, 2))] == [1, 2]

    def test_candidates_fall_back_to_all_entries(self):
        entries = {(0, 1): [(1, 0.30, 5.0), (2, 0.30, 5.0), (3, 0.40, 1.0)]}

        assert len(TwoPointTable(entries, max_rf=0.25).phases((0, 1))) == 3
        assert len(TwoPointTable(entries, min_lod=6.0).phases((0, 1))) == 3
        assert len(TwoPointTable(entries, max_rf=0.35).phases((0, 1))) == 2

    def test_best_entry(self, table):
        assert table.best((0, 2)).phase == 1
        tied = TwoPointTable({(0, 1): [(4, 0.1, 3.0), (2, 0.1, 3.0)]})
        assert tied.best((0, 1)).phase == 2

    def test_matrices(self, table):
        rf = table.rf_matrix([0, 1, 2])
        lod = table.lod_matrix([0, 1, 2])

        assert np.allclose(rf, rf.T)
        assert np.allclose(np.diag(rf), 0.0)
        assert rf[0, 2] == 0.10
        assert rf[1, 2] == 0.5
        assert lod[0, 1] == 1.0
        assert lod[1, 2] == 0.0

    def test_n_mar_inferred(self):
        assert TwoPointTable({(3, 1): [(1, 0.1, 2.0)]}).n_mar == 4

    def test_empty_pair(self):
        with pytest.raises(InputError):
            TwoPointTable({(0, 1): []})


class TestRf2pts:
    def test_true_phase_has_highest_lod(self, informative_group):
        data, phases = informative_group
        table = rf_2pts(data)

        assert len(table) == 15
        for k, phase in enumerate(phases):
            best = table.best((k, k+1))
            assert best.phase == phase
            assert abs(best.rf-0.1) < 0.05
            assert best.lod > 10
            assert [e.phase for e in table.phases((k, k+1))] == [phase]

    def test_parallel_matches_serial(self, informative_group):
        data, _ = informative_group

        serial = rf_2pts(data, markers=[0, 1, 2, 3])
        parallel = rf_2pts(data, markers=[0, 1, 2, 3], cores=3)

        for pair in [(0, 1), (0, 3), (2, 3)]:
            assert serial.entries(pair) == parallel.entries(pair)

    def test_subset_and_table_options(self, informative_group):
        data, _ = informative_group
        table = rf_2pts(data, markers=[5, 0], lod_tolerance=np.inf, min_lod=-np.inf)

        assert (0, 5) in table
        assert len(table) == 1
        assert table.n_mar == data.n_mar
        assert len(table.phases((0, 5))) == 4

    def test_needs_two_markers(self, informative_group):
        data, _ = informative_group
        with pytest.raises(InputError):
            rf_2pts(data, markers=[0])
