"""
Typed values flowing through order composition.

Everything the remote services return is decoded into these dataclasses at the
client boundary; nothing downstream handles raw response dictionaries.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple

from fieldsales.models import PolicyType
from fieldsales.utils.formatters import percent

HUNDRED = Decimal('100')
CENT = Decimal('0.01')


def line_total(pack_count: int, unit_qty: int, unit_price: Decimal, discount_pct: Decimal) -> Decimal:
    """packs × units per pack × unit price × (1 − discount / 100), unrounded."""
    fraction = Decimal(discount_pct) / HUNDRED
    return Decimal(pack_count) * Decimal(unit_qty) * Decimal(unit_price) * (Decimal(1) - fraction)


def to_wire(amount: Optional[Decimal]) -> Optional[float]:
    """Money as the JSON number the ERP expects, rounded to cents."""
    if amount is None:
        return None
    return float(Decimal(amount).quantize(CENT))


def price_to_wire(price: Decimal) -> float:
    """A unit price as a JSON number, at the precision the ERP quoted it."""
    return float(Decimal(price))


@dataclass(frozen=True)
class Territory:
    id: int
    name: str


@dataclass(frozen=True)
class Warehouse:
    id: int
    name: str


@dataclass(frozen=True)
class PolicyTypeOption:
    type: str
    name: str

    @property
    def is_secure_credit(self) -> bool:
        return self.type == PolicyType.SECURE_CREDIT.value


@dataclass(frozen=True)
class OperatorProfile:
    """The signed-in field user: who places the order and what they may pick."""

    employee_id: int
    company_id: int
    territories: Tuple[Territory, ...] = ()
    warehouses: Tuple[Warehouse, ...] = ()
    policy_types: Tuple[PolicyTypeOption, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> 'OperatorProfile':
        try:
            return cls(
                employee_id=int(data['employee_id']),
                company_id=int(data['company_id']),
                territories=tuple(Territory(int(t['id']), t['name']) for t in data.get('territories') or ()),
                warehouses=tuple(Warehouse(int(w['id']), w['name']) for w in data.get('warehouses') or ()),
                policy_types=tuple(
                    PolicyTypeOption(p['type'], p.get('name') or p['type'])
                    for p in data.get('policy_types') or ()
                ),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f'Invalid operator profile: {e}') from e


@dataclass(frozen=True)
class DeliveryAddress:
    """A customer address; ``implicit`` marks the fallback equal to the customer's name."""

    id: Optional[int]
    name: str
    implicit: bool = False

    @property
    def key(self) -> str:
        return self.name if self.implicit else str(self.id)


@dataclass(frozen=True)
class Customer:
    id: int
    name: str
    territory_id: Optional[int] = None
    delivery_addresses: Tuple[DeliveryAddress, ...] = ()

    @property
    def implicit_address(self) -> DeliveryAddress:
        return DeliveryAddress(id=None, name=self.name, implicit=True)

    def address_options(self) -> Tuple[DeliveryAddress, ...]:
        """Explicit addresses followed by the implicit customer-name address."""
        return tuple(self.delivery_addresses) + (self.implicit_address,)


@dataclass(frozen=True)
class Policy:
    """A purchasing balance. ``remaining_amount`` is None for discount-only policies."""

    id: int
    code: str
    remaining_amount: Optional[Decimal] = None
    sale_active: bool = True

    @property
    def is_funded(self) -> bool:
        return self.remaining_amount is not None and self.remaining_amount > 0


@dataclass(frozen=True)
class Product:
    id: int
    name: str
    catalog_price: Optional[Decimal] = None


@dataclass(frozen=True)
class Packaging:
    id: int
    name: str


@dataclass(frozen=True)
class Pricing:
    """Authoritative price for a (customer, policy, product) triple."""

    unit_price: Decimal
    discount_pct: Decimal
    unit_qty: int


@dataclass(frozen=True)
class OrderReceipt:
    """What the external order service answered to an order submission."""

    order_id: Optional[int]
    order_sequence: Optional[str]

    @property
    def is_complete(self) -> bool:
        return bool(self.order_id) and bool(self.order_sequence)


@dataclass(frozen=True)
class SelectionContext:
    territory: Territory
    customer: Customer
    delivery_address: DeliveryAddress
    policy_type: PolicyTypeOption
    warehouse: Warehouse


@dataclass(frozen=True)
class OrderLine:
    """
    A finalized order line.

    Display labels are captured when the line is staged so later selection
    changes never alter them.
    """

    id: str
    policy_id: int
    product_id: int
    packaging_id: int
    pack_count: int
    unit_qty: int
    unit_price: Decimal
    discount_pct: Decimal
    reference_policy_id: Optional[int] = None
    policy_code: str = ''
    reference_policy_code: str = ''
    product_name: str = ''
    packaging_name: str = ''

    @property
    def total(self) -> Decimal:
        return line_total(self.pack_count, self.unit_qty, self.unit_price, self.discount_pct)

    @property
    def policy_key(self) -> int:
        """The balance that funds this line: the reference policy when there is one."""
        if self.reference_policy_id is not None:
            return self.reference_policy_id
        return self.policy_id

    @property
    def total_units(self) -> int:
        return self.pack_count * self.unit_qty

    def to_order_payload(self) -> dict:
        return {
            'product_template_id': self.product_id,
            'policy_id': self.policy_id,
            'ref_policy_id': self.reference_policy_id if self.reference_policy_id is not None else '',
            'product_packaging_id': self.packaging_id,
            'product_packaging_qty': self.pack_count,
            'qty': self.total_units,
            'price_unit': price_to_wire(self.unit_price),
            'discount': float(self.discount_pct),
        }

    def to_local_payload(self) -> dict:
        payload = self.to_order_payload()
        payload.update({
            'ref_policy_id': self.reference_policy_id,
            'product_name': self.product_name,
            'policy_code': self.policy_code,
            'ref_policy_code': self.reference_policy_code or None,
            'packaging_name': self.packaging_name,
        })
        return payload

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'policy': {'id': self.policy_id, 'code': self.policy_code},
            'reference_policy': (
                {'id': self.reference_policy_id, 'code': self.reference_policy_code}
                if self.reference_policy_id is not None else None
            ),
            'product': {'id': self.product_id, 'name': self.product_name},
            'packaging': {'id': self.packaging_id, 'name': self.packaging_name},
            'pack_count': self.pack_count,
            'unit_qty': self.unit_qty,
            'unit_price': str(self.unit_price),
            'discount_pct': str(self.discount_pct),
            'discount_label': percent(self.discount_pct),
            'total': str(self.total.quantize(CENT)),
        }


@dataclass(frozen=True)
class StoredOrderLine:
    product_template_id: int
    policy_id: int
    product_packaging_id: int
    product_packaging_qty: int
    qty: int
    price_unit: Decimal
    discount: Decimal
    ref_policy_id: Optional[int] = None

    def to_order_payload(self) -> dict:
        return {
            'product_template_id': self.product_template_id,
            'policy_id': self.policy_id,
            'ref_policy_id': self.ref_policy_id if self.ref_policy_id is not None else '',
            'product_packaging_id': self.product_packaging_id,
            'product_packaging_qty': self.product_packaging_qty,
            'qty': self.qty,
            'price_unit': price_to_wire(self.price_unit),
            'discount': float(self.discount),
        }


@dataclass(frozen=True)
class StoredOrder:
    """A sales order as held by the local store."""

    id: int
    partner_id: int
    policy_type: str
    order_id: Optional[int] = None
    order_sequence: Optional[str] = None
    territory_id: Optional[int] = None
    warehouse_id: Optional[int] = None
    lines: Tuple[StoredOrderLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class CommitResult:
    order_id: int
    order_sequence: str
    sales_order_id: Optional[int]
    total: Decimal
    line_count: int

    def to_dict(self) -> dict:
        return {
            'order_id': self.order_id,
            'order_sequence': self.order_sequence,
            'sales_order_id': self.sales_order_id,
            'total': str(Decimal(self.total).quantize(CENT)),
            'line_count': self.line_count,
        }
