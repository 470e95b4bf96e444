from decimal import Decimal

import pytest

from holder_rewards.core.utils.units import from_erc20_raw, round_usd


def test_from_erc20_raw_scales_by_decimals():
    assert from_erc20_raw(1_500_000, 6) == Decimal("1.5")
    assert from_erc20_raw(50 * 10**18, 18) == Decimal(50)


def test_from_erc20_raw_rejects_negative_decimals():
    with pytest.raises(ValueError):
        from_erc20_raw(1, -1)


def test_round_usd():
    assert round_usd(169.996) == 170.0
    assert round_usd(Decimal("12.3456"), 3) == 12.346
