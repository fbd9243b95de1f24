import math

import pytest

from metering.core.exceptions import BadRequestError
from metering.services.splits import calculate_splits


@pytest.mark.parametrize("held", [0, 1, 4999.5, 5000])
def test_fits_in_one_claim(held):
    assert calculate_splits(held, 5000) == [held]


@pytest.mark.parametrize(
    "held,max_amount",
    [(12000, 5000), (10000, 5000), (5001, 5000), (123456.75, 1000), (7.5, 2)],
)
def test_split_properties(held, max_amount):
    chunks = calculate_splits(held, max_amount)
    assert sum(chunks) == pytest.approx(held)
    assert all(0 < c <= max_amount for c in chunks)
    assert len(chunks) == math.ceil(held / max_amount)
    # full chunks first, remainder last
    assert all(c == max_amount for c in chunks[:-1])


def test_twelve_thousand_over_five_thousand():
    assert calculate_splits(12000, 5000) == [5000, 5000, 2000]


def test_exact_multiple_has_no_empty_remainder():
    assert calculate_splits(15000, 5000) == [5000, 5000, 5000]


@pytest.mark.parametrize("held,max_amount", [(100, 0), (100, -5), (-1, 10)])
def test_invalid_inputs(held, max_amount):
    with pytest.raises(BadRequestError):
        calculate_splits(held, max_amount)


@pytest.mark.parametrize(
    "held,max_amount,expected",
    [
        (0.1 + 0.2, 0.1, 3),
        (15000.000000000002, 5000, 3),
        (5000.000000000001, 5000, 1),
    ],
)
def test_float_noise_never_yields_dust_chunks(held, max_amount, expected):
    chunks = calculate_splits(held, max_amount)
    assert len(chunks) == expected
    assert all(0 < c <= max_amount for c in chunks)
    assert sum(chunks) == pytest.approx(held, abs=1e-6)


def test_small_fractional_remainder_is_kept():
    assert calculate_splits(10000.5, 5000) == [5000, 5000, 0.5]
