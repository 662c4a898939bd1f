"""Models package - exports all SQLAlchemy models."""
from fieldsales.models.sales_order import (
    SalesOrder, SalesOrderStatus, OdooStatus, PolicyType, POLICY_TYPE_LABELS
)
from fieldsales.models.sales_order_line import SalesOrderLine

__all__ = [
    'SalesOrder', 'SalesOrderStatus', 'OdooStatus', 'PolicyType', 'POLICY_TYPE_LABELS',
    'SalesOrderLine',
]
