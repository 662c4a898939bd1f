"""
Response envelope decoding.

The internal API answers ``{data: ...}`` (the product list endpoint answers a
bare ``{products: [...]}``). The ERP gateway nests its payload one level
deeper: ``{data: {message: ...}}`` for order submission and
``{data: {expense: [...]}}`` for balance and pricing lookups. Each client
method picks the unwrapper that matches its endpoint and converts the result
to typed values right away.
"""
from decimal import Decimal
from typing import Any, List, Optional, Set

from fieldsales.compose.types import (
    Customer, DeliveryAddress, OrderReceipt, Packaging, Policy, Pricing, Product,
    StoredOrder, StoredOrderLine,
)
from fieldsales.exceptions import MalformedResponseError
from fieldsales.utils.number_format import parse_count, parse_decimal, parse_percent


def unwrap_data(body: Any, endpoint: str) -> Any:
    """Internal API envelope: ``{data: ...}``."""
    if not isinstance(body, dict) or 'data' not in body:
        raise MalformedResponseError('Response has no "data" member', endpoint=endpoint)
    return body['data']


def unwrap_message(body: Any, endpoint: str) -> Any:
    """ERP gateway envelope: ``{data: {message: ...}}``."""
    data = unwrap_data(body, endpoint)
    if not isinstance(data, dict) or 'message' not in data:
        raise MalformedResponseError('Response has no "data.message" member', endpoint=endpoint)
    return data['message']


def unwrap_expense(body: Any, endpoint: str) -> List[Any]:
    """ERP gateway envelope: ``{data: {expense: [...]}}``."""
    data = unwrap_data(body, endpoint)
    if not isinstance(data, dict) or 'expense' not in data:
        raise MalformedResponseError('Response has no "data.expense" member', endpoint=endpoint)
    expense = data['expense']
    if expense is None:
        return []
    if not isinstance(expense, list):
        raise MalformedResponseError('"data.expense" is not a list', endpoint=endpoint)
    return expense


def _list(value: Any, endpoint: str, what: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedResponseError(f'Expected a list of {what}', endpoint=endpoint)
    return value


def _optional_id(value: Any) -> Optional[int]:
    if value in (None, '', 0, False):
        return None
    return int(value)


def parse_customers(data: Any, endpoint: str) -> List[Customer]:
    customers = []
    try:
        for item in _list(data, endpoint, 'customers'):
            addresses = tuple(
                DeliveryAddress(id=int(a['id']), name=a['name'])
                for a in item.get('delivery_address') or ()
            )
            customers.append(Customer(
                id=int(item['id']),
                name=item['name'],
                territory_id=_optional_id(item.get('territory_id')),
                delivery_addresses=addresses,
            ))
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise MalformedResponseError(f'Invalid customer entry: {e}', endpoint=endpoint) from e
    return customers


def parse_policy_balances(expense: List[Any], endpoint: str) -> List[Policy]:
    try:
        return [
            Policy(
                id=int(item['policy_id']),
                code=str(item.get('code') or item['policy_id']),
                remaining_amount=Decimal(str(item.get('remaining_amount') or 0)),
            )
            for item in expense
        ]
    except (KeyError, TypeError, ValueError, ArithmeticError) as e:
        raise MalformedResponseError(f'Invalid policy balance: {e}', endpoint=endpoint) from e


def parse_reference_policies(data: Any, endpoint: str) -> List[Policy]:
    """Selectable primary policies under secure credit (balance not reported)."""
    try:
        return [
            Policy(
                id=int(item['policy_id']),
                code=str(item['code']),
                remaining_amount=None,
                sale_active=bool(item.get('sale_active')),
            )
            for item in _list(data, endpoint, 'reference policies')
        ]
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedResponseError(f'Invalid reference policy: {e}', endpoint=endpoint) from e


def parse_reference_codes(data: Any, endpoint: str) -> Set[str]:
    return {str(code) for code in _list(data, endpoint, 'reference policy codes')}


def parse_products(body: Any, endpoint: str) -> List[Product]:
    if not isinstance(body, dict) or 'products' not in body:
        raise MalformedResponseError('Response has no "products" member', endpoint=endpoint)
    try:
        products = []
        for item in _list(body['products'], endpoint, 'products'):
            price = item.get('standard_price')
            products.append(Product(
                id=int(item['id']),
                name=item['name'],
                catalog_price=parse_decimal(price, 'standard_price') if price not in (None, '', False) else None,
            ))
        return products
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedResponseError(f'Invalid product entry: {e}', endpoint=endpoint) from e


def parse_packagings(data: Any, endpoint: str) -> List[Packaging]:
    try:
        return [Packaging(id=int(item['id']), name=item['name']) for item in _list(data, endpoint, 'packagings')]
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedResponseError(f'Invalid packaging entry: {e}', endpoint=endpoint) from e


def parse_pricing(expense: List[Any], endpoint: str) -> Pricing:
    """First expense entry: ``{discount, price_unit, packing_units: [{qty}]}``."""
    if not expense:
        raise MalformedResponseError('No pricing returned for product', endpoint=endpoint)
    entry = expense[0]
    try:
        units = entry.get('packing_units') or []
        if not units:
            raise ValueError('packing_units is empty')
        return Pricing(
            unit_price=parse_decimal(entry['price_unit'], 'price_unit'),
            discount_pct=parse_percent(entry.get('discount') or 0),
            unit_qty=parse_count(units[0]['qty'], 'packing_units.qty'),
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise MalformedResponseError(f'Invalid pricing entry: {e}', endpoint=endpoint) from e


def parse_order_receipt(message: Any, endpoint: str) -> OrderReceipt:
    """Missing or empty identifiers come back as None; callers decide what that means."""
    if not isinstance(message, dict):
        raise MalformedResponseError('"data.message" is not an object', endpoint=endpoint)
    try:
        order_id = _optional_id(message.get('order_id'))
    except (TypeError, ValueError) as e:
        raise MalformedResponseError(f'Invalid order_id: {e}', endpoint=endpoint) from e
    sequence = message.get('order_sequence')
    return OrderReceipt(order_id=order_id, order_sequence=str(sequence) if sequence else None)


def parse_local_id(data: Any, endpoint: str) -> int:
    try:
        return int(data['id'])
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedResponseError(f'Local store answered without an id: {e}', endpoint=endpoint) from e


def parse_stored_order(data: Any, endpoint: str) -> StoredOrder:
    try:
        partner = data.get('partner') or {}
        territory = data.get('territory') or {}
        lines = tuple(
            StoredOrderLine(
                product_template_id=int((line.get('product_template') or {})['id']),
                policy_id=int((line.get('policy') or {})['id']),
                ref_policy_id=_optional_id((line.get('ref_policy') or {}).get('id')),
                product_packaging_id=int((line.get('packaging') or {})['id']),
                product_packaging_qty=parse_count(line['product_packaging_qty']),
                qty=parse_count(line['qty']),
                price_unit=parse_decimal(line['price_unit'], 'price_unit'),
                discount=parse_percent(line.get('discount') or 0),
            )
            for line in data.get('lines') or ()
        )
        return StoredOrder(
            id=int(data['id']),
            partner_id=int(partner['id']),
            policy_type=data['policy_type'],
            order_id=_optional_id(data.get('order_id')),
            order_sequence=data.get('order_sequence') or None,
            territory_id=_optional_id(territory.get('id')),
            warehouse_id=_optional_id(data.get('warehouse_id')),
            lines=lines,
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise MalformedResponseError(f'Invalid sales order: {e}', endpoint=endpoint) from e
