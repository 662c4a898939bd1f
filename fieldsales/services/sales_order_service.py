"""
Sales order service - the local store of orders committed to the ERP.
Handles creation from a commit payload, listing, warehouse assignment and
cancellation.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from fieldsales.compose.types import line_total
from fieldsales.exceptions import BusinessLogicError, InvalidStateError, NotFoundError
from fieldsales.models import OdooStatus, PolicyType, SalesOrder, SalesOrderLine, SalesOrderStatus
from fieldsales.utils.number_format import parse_count, parse_decimal, parse_percent

logger = logging.getLogger(__name__)

# Supplied totals are rounded to cents and unit prices arrive as JSON floats
TOTAL_TOLERANCE = Decimal('0.05')

REQUIRED_ORDER_FIELDS = ('partner_id', 'policy_type', 'lines')
REQUIRED_LINE_FIELDS = (
    'product_template_id', 'policy_id', 'product_packaging_id',
    'product_packaging_qty', 'qty', 'price_unit',
)


def _optional_int(value) -> Optional[int]:
    if value in (None, '', 0):
        return None
    return int(value)


def _parse_line(data: Dict[str, Any], index: int) -> SalesOrderLine:
    missing = [name for name in REQUIRED_LINE_FIELDS if data.get(name) in (None, '')]
    if missing:
        raise BusinessLogicError(f'Line {index + 1}: missing {", ".join(missing)}')
    try:
        packs = parse_count(data['product_packaging_qty'], 'product_packaging_qty')
        qty = parse_count(data['qty'], 'qty')
        if qty % packs:
            raise ValueError('qty must be a multiple of product_packaging_qty')
        return SalesOrderLine(
            product_template_id=int(data['product_template_id']),
            product_name=data.get('product_name'),
            policy_id=int(data['policy_id']),
            policy_code=data.get('policy_code'),
            ref_policy_id=_optional_int(data.get('ref_policy_id')),
            ref_policy_code=data.get('ref_policy_code'),
            product_packaging_id=int(data['product_packaging_id']),
            packaging_name=data.get('packaging_name'),
            product_packaging_qty=packs,
            qty=qty,
            price_unit=parse_decimal(data['price_unit'], 'price_unit'),
            discount=parse_percent(data.get('discount') or 0),
        )
    except (TypeError, ValueError) as e:
        raise BusinessLogicError(f'Line {index + 1}: {e}')


def create_sales_order(data: Dict[str, Any], session) -> SalesOrder:
    """
    Store an order the ERP has accepted.

    The total is recomputed from the lines; a supplied total that disagrees
    beyond rounding is rejected.

    Raises:
        BusinessLogicError: invalid payload or empty line list (400).
        InvalidStateError: an order with the same ERP order_id exists (409).
    """
    if not isinstance(data, dict):
        raise BusinessLogicError('Request body must be a JSON object')
    missing = [name for name in REQUIRED_ORDER_FIELDS if data.get(name) in (None, '')]
    if missing:
        raise BusinessLogicError(f'Missing fields: {", ".join(missing)}')
    if not isinstance(data['lines'], list) or not data['lines']:
        raise BusinessLogicError('An order needs at least one line')

    try:
        PolicyType(data['policy_type'])
    except ValueError:
        raise BusinessLogicError(f'Unknown policy type "{data["policy_type"]}"')

    status = data.get('status') or SalesOrderStatus.SENT.value
    if status not in {s.value for s in SalesOrderStatus}:
        raise BusinessLogicError(f'Unknown status "{status}"')

    lines = [_parse_line(line, index) for index, line in enumerate(data['lines'])]
    computed = sum(
        (line_total(line.product_packaging_qty, line.qty // line.product_packaging_qty,
                    line.price_unit, line.discount) for line in lines),
        Decimal('0'),
    ).quantize(Decimal('0.01'))

    if data.get('total') not in (None, ''):
        try:
            supplied = parse_decimal(data['total'], 'total')
        except ValueError as e:
            raise BusinessLogicError(str(e))
        if abs(supplied - computed) > TOTAL_TOLERANCE:
            raise BusinessLogicError(f'Total {supplied} does not match the lines ({computed})')

    order_id = _optional_int(data.get('order_id'))
    if order_id and session.query(SalesOrder).filter(SalesOrder.order_id == order_id).first():
        raise InvalidStateError(f'Sales order for ERP order {order_id} already exists')

    try:
        order = SalesOrder(
            order_id=order_id,
            order_sequence=data.get('order_sequence') or None,
            partner_id=int(data['partner_id']),
            partner_name=data.get('partner_name'),
            territory_id=_optional_int(data.get('territory_id')),
            territory_name=data.get('territory_name'),
            policy_type=data['policy_type'],
            employee_id=_optional_int(data.get('employee_id')),
            company_id=_optional_int(data.get('company_id')),
            warehouse_id=_optional_int(data.get('warehouse_id')),
            status=status,
            odoo_status=OdooStatus.QUOTATION.value,
            total=computed,
        )
    except (TypeError, ValueError) as e:
        raise BusinessLogicError(f'Invalid order: {e}')
    order.lines = lines

    try:
        session.add(order)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise InvalidStateError(f'Sales order for ERP order {order_id} already exists')

    logger.info(f"[SALES] Stored order #{order.id} ({order.order_sequence}) total {order.total}")
    return order


def list_sales_orders(session, status: Optional[str] = None) -> List[SalesOrder]:
    """All orders, newest first."""
    query = session.query(SalesOrder)
    if status:
        query = query.filter(SalesOrder.status == status)
    return query.order_by(SalesOrder.created_at.desc(), SalesOrder.id.desc()).all()


def get_sales_order(sales_order_id: int, session) -> SalesOrder:
    order = session.get(SalesOrder, sales_order_id)
    if order is None:
        raise NotFoundError(f'Sales order {sales_order_id} not found')
    return order


def assign_warehouse(sales_order_id: int, data: Dict[str, Any], session) -> SalesOrder:
    """
    Set the warehouse of an order that has none, with the ERP identity
    confirmed when it is supplied.
    """
    order = get_sales_order(sales_order_id, session)
    if order.warehouse_id:
        raise InvalidStateError(f'Sales order {sales_order_id} already has a warehouse')
    try:
        warehouse_id = int(data['warehouse_id'])
        order_id = _optional_int(data.get('order_id'))
    except (KeyError, TypeError, ValueError):
        raise BusinessLogicError('warehouse_id is required')

    order.warehouse_id = warehouse_id
    if order_id:
        order.order_id = order_id
    if data.get('order_sequence'):
        order.order_sequence = data['order_sequence']
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise InvalidStateError(f'ERP order {order_id} is already linked to another sales order')
    logger.info(f"[SALES] Warehouse {warehouse_id} assigned to order #{order.id}")
    return order


def cancel_sales_order(order_id: int, session) -> SalesOrder:
    """Cancel by ERP order id; only quotations can be cancelled."""
    order = session.query(SalesOrder).filter(SalesOrder.order_id == order_id).first()
    if order is None:
        raise NotFoundError(f'Sales order for ERP order {order_id} not found')
    if not order.is_cancellable:
        raise InvalidStateError(f'Order {order.order_sequence} is {order.odoo_status} and cannot be cancelled')

    order.status = SalesOrderStatus.CANCELLED.value
    order.odoo_status = OdooStatus.CANCELLED.value
    session.commit()
    logger.info(f"[SALES] Order #{order.id} ({order.order_sequence}) cancelled")
    return order
