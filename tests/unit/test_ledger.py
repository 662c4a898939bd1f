"""
Unit tests for the policy balance ledger.
"""

import pytest
from decimal import Decimal

from fieldsales.compose.ledger import PolicyBalanceLedger
from fieldsales.compose.types import OrderLine, Policy
from fieldsales.exceptions import InsufficientBalanceError, ValidationError


def make_line(line_id, pack_count, unit_price='100', policy_id=10, reference_policy_id=None, discount='0'):
    return OrderLine(
        id=line_id,
        policy_id=policy_id,
        product_id=500,
        packaging_id=700,
        pack_count=pack_count,
        unit_qty=1,
        unit_price=Decimal(unit_price),
        discount_pct=Decimal(discount),
        reference_policy_id=reference_policy_id,
    )


@pytest.fixture
def ledger():
    ledger = PolicyBalanceLedger()
    ledger.record_balances([Policy(10, 'ADV-10', Decimal('1000')), Policy(30, 'REF-30', Decimal('500'))])
    return ledger


class TestValidate:
    """Tests for all-or-nothing acceptance of candidate lines."""

    def test_rejects_line_that_overflows_then_accepts_smaller_one(self, ledger):
        """Remaining 1000, A=400 staged: B=700 rejected, B'=500 accepted."""
        staged = [make_line('a', 4)]

        with pytest.raises(InsufficientBalanceError) as exc:
            ledger.validate(make_line('b', 7), staged)
        assert exc.value.headroom == Decimal('600')
        assert exc.value.requested == Decimal('700')
        assert exc.value.status_code == 422

        headroom_left = ledger.validate(make_line('b2', 5), staged)
        assert headroom_left == Decimal('100')

    def test_exact_fill_is_accepted(self, ledger):
        assert ledger.validate(make_line('a', 10), []) == Decimal('0')

    def test_discount_applies_before_comparison(self, ledger):
        # 12 packs x 100 = 1200, minus 20% = 960
        assert ledger.validate(make_line('a', 12, discount='20'), []) == Decimal('40')

    def test_unknown_policy_key_is_a_validation_error(self, ledger):
        with pytest.raises(ValidationError):
            ledger.validate(make_line('a', 1, policy_id=99), [])

    def test_reference_policy_funds_the_line(self, ledger):
        line = make_line('a', 6, policy_id=40, reference_policy_id=30)
        with pytest.raises(InsufficientBalanceError) as exc:
            ledger.validate(line, [])
        assert exc.value.policy_key == 30

    def test_other_policy_lines_do_not_consume(self, ledger):
        staged = [make_line('a', 4, policy_id=40, reference_policy_id=30)]
        assert ledger.headroom(10, staged) == Decimal('1000')
        assert ledger.headroom(30, staged) == Decimal('100')


class TestBalances:
    """Tests for recorded balances and headroom bookkeeping."""

    def test_record_skips_unreported_balances(self):
        ledger = PolicyBalanceLedger()
        ledger.record_balances([Policy(40, 'SC-40', None)])
        assert ledger.headrooms([]) == {}
        with pytest.raises(ValidationError):
            ledger.remaining(40)

    def test_fresh_fetch_overrides_previous_balance(self, ledger):
        ledger.record_balances([Policy(10, 'ADV-10', Decimal('250'))])
        assert ledger.remaining(10) == Decimal('250')
        assert ledger.remaining(30) == Decimal('500')

    def test_removing_a_line_restores_headroom(self, ledger):
        staged = [make_line('a', 4), make_line('b', 3)]
        assert ledger.headroom(10, staged) == Decimal('300')
        assert ledger.headroom(10, staged[:1]) == Decimal('600')

    def test_headrooms_cover_every_known_key(self, ledger):
        assert ledger.headrooms([make_line('a', 2)]) == {10: Decimal('800'), 30: Decimal('500')}

    def test_check_invariant_reports_overdrawn_key(self, ledger):
        assert ledger.check_invariant([make_line('a', 4)]) is None
        ledger.record_balances([Policy(10, 'ADV-10', Decimal('300'))])
        assert ledger.check_invariant([make_line('a', 4)]) == 10
