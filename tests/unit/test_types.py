"""
Unit tests for composition value types.
"""

import pytest
from decimal import Decimal

from fieldsales.compose.types import (
    Customer, DeliveryAddress, OperatorProfile, OrderLine, OrderReceipt, Policy,
    line_total, price_to_wire, to_wire,
)


class TestLineTotal:

    def test_total_is_exact(self):
        # 3 packs x 2 units x 33.33 x (1 - 0.125)
        assert line_total(3, 2, Decimal('33.33'), Decimal('12.5')) == Decimal('174.9825')

    def test_to_wire_rounds_to_cents(self):
        assert to_wire(Decimal('174.9825')) == 174.98
        assert to_wire(None) is None

    def test_unit_price_keeps_sub_cent_precision(self):
        assert price_to_wire(Decimal('10.125')) == 10.125


class TestOrderLine:

    def make(self, **overrides):
        values = dict(
            id='l1', policy_id=40, product_id=500, packaging_id=700, pack_count=3,
            unit_qty=2, unit_price=Decimal('100'), discount_pct=Decimal('10'),
            policy_code='SC-40', product_name='Urea 50kg', packaging_name='Bag 50kg',
        )
        values.update(overrides)
        return OrderLine(**values)

    def test_policy_key_prefers_reference_policy(self):
        assert self.make().policy_key == 40
        assert self.make(reference_policy_id=30).policy_key == 30

    def test_order_payload(self):
        payload = self.make().to_order_payload()
        assert payload == {
            'product_template_id': 500,
            'policy_id': 40,
            'ref_policy_id': '',
            'product_packaging_id': 700,
            'product_packaging_qty': 3,
            'qty': 6,
            'price_unit': 100.0,
            'discount': 10.0,
        }

    def test_sub_cent_price_is_sent_unrounded(self):
        payload = self.make(unit_price=Decimal('10.125')).to_local_payload()
        assert payload['price_unit'] == 10.125

    def test_local_payload_carries_labels(self):
        payload = self.make(reference_policy_id=30, reference_policy_code='REF-30').to_local_payload()
        assert payload['ref_policy_id'] == 30
        assert payload['ref_policy_code'] == 'REF-30'
        assert payload['product_name'] == 'Urea 50kg'

    def test_to_dict(self):
        data = self.make().to_dict()
        assert data['total'] == '540.00'
        assert data['discount_label'] == '10%'
        assert data['reference_policy'] is None


class TestSelectionValues:

    def test_customer_address_options_end_with_implicit_address(self):
        customer = Customer(100, 'Acme Farms', 1, (DeliveryAddress(900, 'Acme Depot'),))
        options = customer.address_options()
        assert [a.key for a in options] == ['900', 'Acme Farms']
        assert options[-1].implicit

    def test_policy_is_funded_only_with_positive_balance(self):
        assert Policy(1, 'A', Decimal('0.01')).is_funded
        assert not Policy(1, 'A', Decimal('0')).is_funded
        assert not Policy(1, 'A', None).is_funded

    @pytest.mark.parametrize('order_id,sequence,complete', [
        (9001, 'SO-9001', True),
        (None, 'SO-1', False),
        (9001, None, False),
    ])
    def test_receipt_completeness(self, order_id, sequence, complete):
        assert OrderReceipt(order_id, sequence).is_complete is complete

    def test_profile_from_dict(self):
        profile = OperatorProfile.from_dict({
            'employee_id': '11', 'company_id': 1,
            'territories': [{'id': '1', 'name': 'North'}],
            'policy_types': [{'type': 'is_secure_credit'}],
        })
        assert profile.employee_id == 11
        assert profile.territories[0].id == 1
        assert profile.policy_types[0].name == 'is_secure_credit'
        assert profile.policy_types[0].is_secure_credit

    def test_profile_requires_employee(self):
        with pytest.raises(ValueError):
            OperatorProfile.from_dict({'company_id': 1})
