"""
Selection resolver - the chain of dependent lookups behind an order.

    territory -> customers -> customer -> delivery address -> policy type
      -> balances -> policies -> policy -> [reference policies -> reference policy]
      -> products -> product -> packagings / pricing

Selecting a field clears everything after it in the chain and fetches what the
new value unlocks. Every fetched field carries a generation counter; a response
is applied only if its field's generation is unchanged since the request went
out, so an answer for a superseded selection can never overwrite fresher state.
"""
import functools
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from fieldsales.compose.types import (
    Customer, DeliveryAddress, OperatorProfile, Packaging, Policy, PolicyTypeOption,
    Pricing, Product, SelectionContext, Territory, Warehouse,
)
from fieldsales.exceptions import (
    MissingFieldError, NetworkError, NoReferencePolicyError, PolicyExhaustedError,
    UnknownOptionError,
)

logger = logging.getLogger(__name__)

CHAIN = (
    'territory', 'customers', 'customer', 'delivery_address', 'policy_type',
    'balances', 'policies', 'policy', 'reference_policies', 'reference_policy',
    'products', 'product', 'packagings', 'packaging', 'pricing',
)

# Empty value for each field of the chain
EMPTY = {
    'customers': list, 'balances': list, 'policies': list, 'reference_policies': list,
    'products': list, 'packagings': list,
}

LINE_FIELDS = CHAIN[CHAIN.index('policy'):]


class _Superseded(Exception):
    """A response arrived for a field that has since moved on."""


def _discard_superseded(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except _Superseded as e:
            logger.info(f"[RESOLVER] Discarded stale response for {e}")
            return None
    return wrapper


class SelectionResolver:
    """
    Owns the selection context and the option lists that depend on it.

    Listeners (the line builder) are told when fields are cleared and when
    line-level values resolve, through ``on_cleared(fields)`` and
    ``on_resolved(field, value)``.
    """

    def __init__(self, profile: OperatorProfile, backend, gateway):
        self.profile = profile
        self.backend = backend
        self.gateway = gateway
        self._generations: Dict[str, int] = defaultdict(int)
        self._listeners: List[Any] = []

        self.territory: Optional[Territory] = None
        self.warehouse: Optional[Warehouse] = None
        self.customers: List[Customer] = []
        self.customer: Optional[Customer] = None
        self.delivery_addresses: List[DeliveryAddress] = []
        self.delivery_address: Optional[DeliveryAddress] = None
        self.policy_type: Optional[PolicyTypeOption] = None
        self.balances: List[Policy] = []
        self.policies: List[Policy] = []
        self.policy: Optional[Policy] = None
        self.reference_pool: List[Policy] = []
        self.reference_policies: List[Policy] = []
        self.reference_policy: Optional[Policy] = None
        self.products: List[Product] = []
        self.product: Optional[Product] = None
        self.packagings: List[Packaging] = []
        self.packaging: Optional[Packaging] = None
        self.pricing: Optional[Pricing] = None

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def subscribe(self, listener) -> None:
        self._listeners.append(listener)

    def _notify_cleared(self, fields) -> None:
        for listener in self._listeners:
            listener.on_cleared(fields)

    def _notify_resolved(self, field: str, value) -> None:
        for listener in self._listeners:
            listener.on_resolved(field, value)

    def generation(self, field: str) -> int:
        return self._generations[field]

    def _bump(self, field: str) -> int:
        self._generations[field] += 1
        return self._generations[field]

    def _clear_from(self, field: str, inclusive: bool = True) -> None:
        """Reset ``field`` (optionally) and everything downstream of it."""
        start = CHAIN.index(field) + (0 if inclusive else 1)
        cleared = CHAIN[start:]
        for name in cleared:
            self._bump(name)
            setattr(self, name, EMPTY[name]() if name in EMPTY else None)
            if name == 'delivery_address':
                self.delivery_addresses = []
            elif name == 'balances':
                self.reference_pool = []
        self._notify_cleared(set(cleared))

    def _fetch(self, field: str, loader: Callable[[], Any]):
        """
        Run ``loader`` for ``field`` and return its result if still current.

        Raises:
            _Superseded: the field moved on while the request was out.
            NetworkError: the request failed for the current selection.
        """
        token = self._bump(field)
        try:
            result = loader()
        except NetworkError:
            if token != self._generations[field]:
                raise _Superseded(field)
            logger.warning(f"[RESOLVER] Fetch failed for {field}")
            raise
        if token != self._generations[field]:
            raise _Superseded(field)
        return result

    @staticmethod
    def _pick(options, value, field: str, key=lambda option: option.id):
        for option in options:
            if key(option) == value:
                return option
        raise UnknownOptionError(field, value)

    @property
    def is_secure_credit(self) -> bool:
        return self.policy_type is not None and self.policy_type.is_secure_credit

    @property
    def funding_policies(self) -> List[Policy]:
        """Balances that pay for lines: the reference pool under secure credit."""
        return self.reference_pool if self.is_secure_credit else self.policies

    # ------------------------------------------------------------------
    # Context selections
    # ------------------------------------------------------------------

    @_discard_superseded
    def select_territory(self, territory_id: int) -> None:
        territory = self._pick(self.profile.territories, territory_id, 'territory')
        self._clear_from('territory')
        self.territory = territory
        self.warehouse = self.profile.warehouses[0] if self.profile.warehouses else None
        logger.info(f"[RESOLVER] Territory {territory.id} ({territory.name}) selected")
        self.customers = self._fetch('customers', lambda: self.backend.get_customers(territory.id))

    def select_warehouse(self, warehouse_id: int) -> None:
        self.warehouse = self._pick(self.profile.warehouses, warehouse_id, 'warehouse')

    def select_customer(self, customer_id: int) -> None:
        if self.territory is None:
            raise MissingFieldError(['territory'])
        customer = self._pick(self.customers, customer_id, 'customer')
        self._clear_from('customer')
        self.customer = customer
        self.delivery_addresses = list(customer.address_options())
        # The implicit customer-name address is the default either way
        self.delivery_address = customer.implicit_address

    def select_delivery_address(self, key) -> None:
        if self.customer is None:
            raise MissingFieldError(['customer'])
        options = self.customer.address_options()
        address = self._pick(options, str(key), 'delivery_address', key=lambda a: a.key)
        self._clear_from('delivery_address')
        self.delivery_addresses = list(options)
        self.delivery_address = address

    @property
    def policy_type_options(self) -> List[PolicyTypeOption]:
        return list(self.profile.policy_types) if self.customer is not None else []

    @_discard_superseded
    def select_policy_type(self, policy_type: str) -> None:
        if self.customer is None:
            raise MissingFieldError(['customer'])
        option = self._pick(self.policy_type_options, policy_type, 'policy_type', key=lambda o: o.type)
        self._clear_from('policy_type')
        self.policy_type = option
        customer = self.customer

        balances = self._fetch(
            'balances', lambda: self.gateway.get_policy_balances(customer.id, option.type)
        )
        if not balances:
            raise PolicyExhaustedError('No policies available for the selected customer')
        funded = [policy for policy in balances if policy.is_funded]
        if not funded:
            raise PolicyExhaustedError()
        self.balances = funded
        self._notify_resolved('balances', funded)

        if option.is_secure_credit:
            self.reference_pool = funded
            primary = self._fetch('policies', self.backend.get_reference_policies)
            self.policies = [policy for policy in primary if policy.sale_active]
        else:
            self.policies = funded
        logger.info(
            f"[RESOLVER] {len(self.policies)} policies for customer {customer.id} ({option.type})"
        )

    def context(self) -> SelectionContext:
        """The complete order context, or MissingFieldError naming the gaps."""
        values = {
            'territory': self.territory,
            'customer': self.customer,
            'delivery_address': self.delivery_address,
            'policy_type': self.policy_type,
            'warehouse': self.warehouse,
        }
        missing = [name for name, value in values.items() if value is None]
        if missing:
            raise MissingFieldError(missing)
        return SelectionContext(**values)

    # ------------------------------------------------------------------
    # Line selections
    # ------------------------------------------------------------------

    @_discard_superseded
    def select_policy(self, policy_id: int) -> None:
        if self.policy_type is None:
            raise MissingFieldError(['policy_type'])
        policy = self._pick(self.policies, policy_id, 'policy')
        self._clear_from('policy')
        self.policy = policy
        self._notify_resolved('policy', policy)

        if self.is_secure_credit:
            codes = [ref.code for ref in self.reference_pool]
            allowed_codes = self._fetch(
                'reference_policies',
                lambda: self.backend.get_related_reference_codes(policy.id, codes)
            )
            self.reference_policies = [ref for ref in self.reference_pool if ref.code in allowed_codes]
            if not self.reference_policies:
                raise NoReferencePolicyError(policy.id)
            return

        self._load_products()

    @_discard_superseded
    def select_reference_policy(self, reference_policy_id: int) -> None:
        if self.policy is None:
            raise MissingFieldError(['policy'])
        reference = self._pick(self.reference_policies, reference_policy_id, 'reference_policy')
        self._clear_from('reference_policy')
        self.reference_policy = reference
        self._notify_resolved('reference_policy', reference)
        self._load_products()

    def _load_products(self) -> None:
        policy, policy_type = self.policy, self.policy_type.type
        self.products = self._fetch('products', lambda: self.backend.get_products(policy.id, policy_type))

    @_discard_superseded
    def select_product(self, product_id: int) -> None:
        if self.policy is None:
            raise MissingFieldError(['policy'])
        product = self._pick(self.products, product_id, 'product')
        self._clear_from('product')
        self.product = product
        self._notify_resolved('product', product)
        customer, policy = self.customer, self.policy

        self.packagings = self._fetch('packagings', lambda: self.backend.get_packagings(product.id))
        if self.packagings:
            self.packaging = self.packagings[0]
            self._notify_resolved('packaging', self.packaging)

        self.pricing = self._fetch(
            'pricing', lambda: self.gateway.get_pricing(customer.id, policy.id, product.id)
        )
        self._notify_resolved('pricing', self.pricing)

    def select_packaging(self, packaging_id: int) -> None:
        if self.product is None:
            raise MissingFieldError(['product'])
        self.packaging = self._pick(self.packagings, packaging_id, 'packaging')
        self._notify_resolved('packaging', self.packaging)

    def reset_line(self) -> None:
        """Forget line-level selections; the policy list stays."""
        self._clear_from('policy')

    # ------------------------------------------------------------------
    # Labels and snapshots
    # ------------------------------------------------------------------

    def label_for(self, field: str, value_id: Optional[int]) -> str:
        if value_id is None:
            return ''
        options = {
            'policy': self.policies,
            'reference_policy': self.reference_policies,
            'product': self.products,
            'packaging': self.packagings,
        }[field]
        for option in options:
            if option.id == value_id:
                return getattr(option, 'code', None) or getattr(option, 'name', '')
        return ''

    def snapshot(self) -> dict:
        def ref(item, *attrs):
            if item is None:
                return None
            return {attr: getattr(item, attr) for attr in attrs}

        return {
            'context': {
                'territory': ref(self.territory, 'id', 'name'),
                'customer': ref(self.customer, 'id', 'name'),
                'delivery_address': ref(self.delivery_address, 'key', 'name'),
                'policy_type': ref(self.policy_type, 'type', 'name'),
                'warehouse': ref(self.warehouse, 'id', 'name'),
            },
            'options': {
                'territories': [ref(t, 'id', 'name') for t in self.profile.territories],
                'warehouses': [ref(w, 'id', 'name') for w in self.profile.warehouses],
                'customers': [ref(c, 'id', 'name') for c in self.customers],
                'delivery_addresses': [ref(a, 'key', 'name') for a in self.delivery_addresses],
                'policy_types': [ref(p, 'type', 'name') for p in self.policy_type_options],
                'policies': [
                    {'id': p.id, 'code': p.code,
                     'remaining_amount': str(p.remaining_amount) if p.remaining_amount is not None else None}
                    for p in self.policies
                ],
                'reference_policies': [
                    {'id': p.id, 'code': p.code, 'remaining_amount': str(p.remaining_amount)}
                    for p in self.reference_policies
                ],
                'products': [ref(p, 'id', 'name') for p in self.products],
                'packagings': [ref(p, 'id', 'name') for p in self.packagings],
            },
        }
