import copy

import pytest
from decimal import Decimal

from fieldsales import create_app
from fieldsales.compose import ComposeSession
from fieldsales.compose.types import (
    Customer, DeliveryAddress, OperatorProfile, OrderReceipt, Packaging, Policy,
    PolicyTypeOption, Pricing, Product, Territory, Warehouse,
)
from fieldsales.database import create_all, get_session
from fieldsales.exceptions import NetworkError


PROFILE_DATA = {
    'employee_id': 11,
    'company_id': 1,
    'territories': [{'id': 1, 'name': 'North'}, {'id': 2, 'name': 'South'}],
    'warehouses': [{'id': 5, 'name': 'Main WH'}, {'id': 6, 'name': 'Backup WH'}],
    'policy_types': [
        {'type': 'is_advance', 'name': 'Advance'},
        {'type': 'is_secure_credit', 'name': 'Secure Credit'},
    ],
}


class _Recorder:
    """Call log, one-shot hooks and injected failures shared by the fakes."""

    def __init__(self):
        self.calls = []
        self.hooks = {}
        self.failures = {}

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        hook = self.hooks.pop(name, None)
        if hook is not None:
            hook()
        if name in self.failures:
            raise self.failures[name]

    def called(self, name):
        return [call[1:] for call in self.calls if call[0] == name]


class FakeBackend(_Recorder):
    """In-memory stand-in for the internal API client."""

    def __init__(self):
        super().__init__()
        self.customers = {
            1: [
                Customer(100, 'Acme Farms', 1, (DeliveryAddress(900, 'Acme Depot'),)),
                Customer(101, 'Green Fields', 1),
            ],
            2: [Customer(200, 'Delta Agro', 2)],
        }
        self.reference_policies = [
            Policy(40, 'SC-40', None, True),
            Policy(41, 'SC-41', None, False),
            Policy(42, 'SC-42', None, True),
        ]
        self.related_codes = {40: {'REF-30'}, 42: set()}
        products = [
            Product(500, 'Urea 50kg', Decimal('100')),
            Product(501, 'DAP 50kg', Decimal('250')),
        ]
        self.products = {10: products, 40: products}
        self.packagings = {
            500: [Packaging(700, 'Bag 50kg'), Packaging(701, 'Pallet 40 bags')],
            501: [Packaging(702, 'Bag 50kg')],
        }
        self.created = []
        self.stored = {}
        self.assigned = []
        self._next_id = 1

    def get_customers(self, territory_id):
        self._call('get_customers', territory_id)
        return list(self.customers.get(territory_id, []))

    def get_reference_policies(self):
        self._call('get_reference_policies')
        return list(self.reference_policies)

    def get_related_reference_codes(self, policy_id, codes):
        codes = list(codes)
        self._call('get_related_reference_codes', policy_id, codes)
        return self.related_codes.get(policy_id, set()) & set(codes)

    def get_products(self, policy_id, policy_type):
        self._call('get_products', policy_id, policy_type)
        return list(self.products.get(policy_id, []))

    def get_packagings(self, product_id):
        self._call('get_packagings', product_id)
        return list(self.packagings.get(product_id, []))

    def create_sales_order(self, payload):
        self._call('create_sales_order', payload)
        self.created.append(payload)
        local_id = self._next_id
        self._next_id += 1
        return local_id

    def get_sales_order(self, sales_order_id):
        self._call('get_sales_order', sales_order_id)
        if sales_order_id not in self.stored:
            raise NetworkError(f'Sales order {sales_order_id} not found', status_code=404)
        return self.stored[sales_order_id]

    def assign_warehouse(self, sales_order_id, warehouse_id, order_id=None, order_sequence=None):
        self._call('assign_warehouse', sales_order_id, warehouse_id, order_id, order_sequence)
        self.assigned.append((sales_order_id, warehouse_id, order_id, order_sequence))


class FakeGateway(_Recorder):
    """In-memory stand-in for the ERP gateway client."""

    def __init__(self):
        super().__init__()
        self.balances = {
            (100, 'is_advance'): [
                Policy(10, 'ADV-10', Decimal('1000')),
                Policy(11, 'ADV-11', Decimal('0')),
            ],
            (101, 'is_advance'): [Policy(12, 'ADV-12', Decimal('0'))],
            (100, 'is_secure_credit'): [
                Policy(30, 'REF-30', Decimal('1000')),
                Policy(31, 'REF-31', Decimal('500')),
            ],
        }
        self.pricing = {
            (100, 10, 500): Pricing(Decimal('100'), Decimal('0'), 1),
            (100, 10, 501): Pricing(Decimal('250'), Decimal('10'), 2),
            (100, 40, 500): Pricing(Decimal('100'), Decimal('0'), 1),
        }
        self.receipt = OrderReceipt(9001, 'SO-9001')
        self.orders = []

    def get_policy_balances(self, partner_id, policy_type):
        self._call('get_policy_balances', partner_id, policy_type)
        return list(self.balances.get((partner_id, policy_type), []))

    def get_pricing(self, partner_id, policy_id, product_id):
        self._call('get_pricing', partner_id, policy_id, product_id)
        return self.pricing[(partner_id, policy_id, product_id)]

    def post_order(self, payload):
        self._call('post_order', payload)
        self.orders.append(payload)
        return self.receipt


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def profile_data():
    """Operator profile as a client posts it when opening a session."""
    return copy.deepcopy(PROFILE_DATA)


@pytest.fixture
def profile():
    return OperatorProfile(
        employee_id=11,
        company_id=1,
        territories=(Territory(1, 'North'), Territory(2, 'South')),
        warehouses=(Warehouse(5, 'Main WH'), Warehouse(6, 'Backup WH')),
        policy_types=(
            PolicyTypeOption('is_advance', 'Advance'),
            PolicyTypeOption('is_secure_credit', 'Secure Credit'),
        ),
    )


@pytest.fixture
def compose_session(profile, backend, gateway):
    """A fresh composition session over the fake clients."""
    return ComposeSession(profile, backend, gateway)


@pytest.fixture
def advance_session(compose_session):
    """Context selected: North / Acme Farms / Advance; balances 10 -> 1000."""
    compose_session.select('territory', 1)
    compose_session.select('customer', 100)
    compose_session.select('policy_type', 'is_advance')
    return compose_session


@pytest.fixture
def app(backend, gateway):
    """Create application instance for testing."""
    app = create_app('config.TestConfig', clients_factory=lambda: (backend, gateway))
    with app.app_context():
        create_all()
    return app


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def session(app):
    """Create database session for testing."""
    session = get_session()
    yield session
    session.rollback()
    session.remove()


def _stage_line(compose_session, product_id=500, pack_count=1, policy_id=10, reference_policy_id=None):
    """Select a line through the builder and stage it."""
    compose_session.set_field('policy', policy_id)
    if reference_policy_id is not None:
        compose_session.set_field('reference_policy', reference_policy_id)
    compose_session.set_field('product', product_id)
    compose_session.set_field('pack_count', pack_count)
    return compose_session.stage()


@pytest.fixture
def stage_line():
    return _stage_line
