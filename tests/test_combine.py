import pytest

from conftest import TrendSpec
from revenue_projection.calibration import calibrate
from revenue_projection.combine import combine_tables
from revenue_projection.errors import DuplicateModelId
from revenue_projection.registry import fit_table


def test_combining_five_and_four_models_keeps_calibration(split, make_table):
    first = calibrate(make_table([TrendSpec(offset=float(i)) for i in range(5)], start_id=1), split.testing).table
    second = calibrate(make_table([TrendSpec(offset=-float(i)) for i in range(4)], start_id=6), split.testing).table

    combined = combine_tables(first, second)

    assert combined.ids == tuple(range(1, 10))
    for source in (first, second):
        for entry in source:
            assert combined.entry(entry.model_id).calibration is entry.calibration


def test_uncalibrated_tables_combine_as_is(make_table):
    combined = combine_tables(make_table([TrendSpec()], start_id=1), make_table([TrendSpec()], start_id=2))

    assert combined.ids == (1, 2)
    assert not any(entry.is_calibrated for entry in combined)


@pytest.mark.parametrize("order", [(0, 1), (1, 0)])
def test_duplicate_ids_fail_in_either_order(make_table, order):
    tables = [make_table([TrendSpec(), TrendSpec()], start_id=1), make_table([TrendSpec()], start_id=2)]

    with pytest.raises(DuplicateModelId) as excinfo:
        combine_tables(*(tables[i] for i in order))
    assert excinfo.value.model_ids == (2,)


def test_combine_is_associative(make_table):
    a = make_table([TrendSpec()], start_id=1)
    b = make_table([TrendSpec(), TrendSpec()], start_id=2)
    c = make_table([TrendSpec()], start_id=4)

    left = combine_tables(combine_tables(a, b), c)
    right = combine_tables(a, combine_tables(b, c))

    assert left.ids == right.ids == (1, 2, 3, 4)
    assert [entry.model for entry in left] == [entry.model for entry in right]


def test_duplicate_fails_regardless_of_grouping(make_table):
    a = make_table([TrendSpec()], start_id=1)
    b = make_table([TrendSpec()], start_id=2)
    c = make_table([TrendSpec()], start_id=1)

    with pytest.raises(DuplicateModelId):
        combine_tables(combine_tables(a, b), c)
    with pytest.raises(DuplicateModelId):
        combine_tables(a, combine_tables(b, c))


def test_renumbering_before_combining(make_table):
    a = make_table([TrendSpec(), TrendSpec()], start_id=1)
    b = make_table([TrendSpec()], start_id=1)

    combined = combine_tables(a, b.renumbered(start=3))
    assert combined.ids == (1, 2, 3)


def test_combine_needs_two_tables(make_table):
    with pytest.raises(ValueError):
        combine_tables(make_table([TrendSpec()]))


def test_combined_table_never_reissues_failed_fit_ids(split, make_table):
    fitted = fit_table([TrendSpec(), TrendSpec(fail_fit_above=5), TrendSpec(fail_fit_above=5)], split.training)
    assert fitted.table.ids == (1,)
    other = make_table([TrendSpec()], start_id=2)

    combined = combine_tables(other, fitted.table)

    assert combined.ids == (2, 1)
    with pytest.raises(ValueError):
        combined.register(fitted.table.get(1), model_id=3)
    assert combined.register(fitted.table.get(1)) == 4
