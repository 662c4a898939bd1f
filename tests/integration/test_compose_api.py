"""
Integration tests for the order composition API: sessions, selections,
staging and the two-phase commit through the Flask app.
"""
import pytest
from decimal import Decimal

from fieldsales.compose.types import OrderReceipt, Pricing, StoredOrder, StoredOrderLine
from fieldsales.database import get_session
from fieldsales.exceptions import NetworkError
from fieldsales.services import sales_order_service


def open_session(client, profile_data):
    response = client.post('/compose/sessions', json=profile_data)
    assert response.status_code == 201
    return response.get_json()['data']['id']


def select(client, sid, field, value):
    return client.put(f'/compose/sessions/{sid}/selection', json={'field': field, 'value': value})


def draft(client, sid, field, value):
    return client.put(f'/compose/sessions/{sid}/draft', json={'field': field, 'value': value})


@pytest.fixture
def sid(client, profile_data):
    """Session with North / Acme Farms / Advance selected."""
    sid = open_session(client, profile_data)
    select(client, sid, 'territory', 1)
    select(client, sid, 'customer', 100)
    select(client, sid, 'policy_type', 'is_advance')
    return sid


def stage(client, sid, product_id=500, pack_count=1):
    draft(client, sid, 'policy', 10)
    draft(client, sid, 'product', product_id)
    draft(client, sid, 'pack_count', pack_count)
    return client.post(f'/compose/sessions/{sid}/lines')


class TestSessions:

    def test_open_session(self, client, app, profile_data):
        response = client.post('/compose/sessions', json=profile_data)

        assert response.status_code == 201
        data = response.get_json()['data']
        assert data['state'] == 'empty'
        assert data['lines'] == []
        assert data['total'] == '0.00'
        assert [t['name'] for t in data['options']['territories']] == ['North', 'South']
        assert len(app.extensions['compose_sessions']) == 1

    def test_invalid_profile(self, client):
        response = client.post('/compose/sessions', json={'company_id': 1})
        assert response.status_code == 400
        assert 'Invalid operator profile' in response.get_json()['message']

    def test_unknown_session(self, client):
        response = client.get('/compose/sessions/nope')
        assert response.status_code == 404
        assert response.get_json()['status'] == 'error'

    def test_close_session(self, client, profile_data):
        sid = open_session(client, profile_data)

        assert client.delete(f'/compose/sessions/{sid}').status_code == 200
        assert client.get(f'/compose/sessions/{sid}').status_code == 404


class TestSelections:

    def test_context_selection_snapshot(self, client, sid):
        data = client.get(f'/compose/sessions/{sid}').get_json()['data']

        assert data['context']['customer'] == {'id': 100, 'name': 'Acme Farms'}
        assert data['context']['delivery_address'] == {'key': 'Acme Farms', 'name': 'Acme Farms'}
        assert data['context']['warehouse'] == {'id': 5, 'name': 'Main WH'}
        assert data['options']['policies'] == [{'id': 10, 'code': 'ADV-10', 'remaining_amount': '1000'}]
        assert data['headroom'] == {'10': '1000.00'}
        assert data['state'] == 'building'

    def test_unknown_option(self, client, sid):
        response = select(client, sid, 'customer', 999)
        assert response.status_code == 422
        assert response.get_json()['field'] == 'customer'

    def test_unknown_selection_field(self, client, sid):
        response = select(client, sid, 'colour', 'red')
        assert response.status_code == 422

    def test_field_is_required(self, client, sid):
        response = client.put(f'/compose/sessions/{sid}/selection', json={'value': 1})
        assert response.status_code == 400

    def test_exhausted_balances(self, client, profile_data):
        sid = open_session(client, profile_data)
        select(client, sid, 'territory', 1)
        select(client, sid, 'customer', 101)

        response = select(client, sid, 'policy_type', 'is_advance')

        assert response.status_code == 409
        assert response.get_json()['message'] == 'Balance exhausted for all policies.'

    def test_draft_reflects_pricing(self, client, sid):
        draft(client, sid, 'policy', 10)
        data = draft(client, sid, 'product', 501).get_json()['data']

        assert data['draft']['unit_price'] == '250'
        assert data['draft']['unit_qty'] == 2
        assert data['draft']['discount_pct'] == '10'
        assert data['draft']['total'] == '450.00'
        assert data['missing_fields'] == []

    def test_read_only_field(self, client, sid):
        draft(client, sid, 'policy', 10)
        draft(client, sid, 'product', 500)

        response = draft(client, sid, 'unit_price', 1)

        assert response.status_code == 422
        assert response.get_json()['field'] == 'unit_price'


class TestStaging:

    def test_stage_and_remove_line(self, client, sid):
        response = stage(client, sid, pack_count=4)

        assert response.status_code == 201
        body = response.get_json()
        assert body['line']['total'] == '400.00'
        assert body['data']['headroom'] == {'10': '600.00'}
        assert body['data']['state'] == 'line_staged'

        response = client.delete(f"/compose/sessions/{sid}/lines/{body['line']['id']}")

        data = response.get_json()['data']
        assert data['lines'] == []
        assert data['headroom'] == {'10': '1000.00'}
        assert data['state'] == 'building'

    def test_insufficient_balance(self, client, sid):
        stage(client, sid, pack_count=4)

        response = stage(client, sid, pack_count=7)

        assert response.status_code == 422
        body = response.get_json()
        assert body['policy_key'] == 10
        assert body['headroom'] == '600'
        assert "can't add this product" in body['message']

    def test_missing_fields(self, client, sid):
        draft(client, sid, 'policy', 10)
        response = client.post(f'/compose/sessions/{sid}/lines')
        assert response.status_code == 422
        assert response.get_json()['fields'] == ['product', 'packaging', 'pack_count']

    def test_remove_unknown_line(self, client, sid):
        response = client.delete(f'/compose/sessions/{sid}/lines/zzz')
        assert response.status_code == 404


class TestCommit:

    def test_commit_stores_order_locally(self, client, sid, app, backend, gateway):
        def store_locally(payload):
            return sales_order_service.create_sales_order(payload, get_session()).id

        backend.create_sales_order = store_locally
        stage(client, sid, pack_count=4)
        draft(client, sid, 'policy', 10)
        draft(client, sid, 'product', 501)

        response = client.post(f'/compose/sessions/{sid}/commit')

        assert response.status_code == 201
        body = response.get_json()
        assert body['message'] == 'Order added successfully'
        assert body['data'] == {
            'order_id': 9001,
            'order_sequence': 'SO-9001',
            'sales_order_id': 1,
            'total': '850.00',
            'line_count': 2,
        }
        assert [line['product_template_id'] for line in gateway.orders[0]['lines']] == [501, 500]

        stored = client.get('/sales/1').get_json()['data']
        assert stored['order_sequence'] == 'SO-9001'
        assert stored['total'] == '850.00'
        assert [line['product_template']['name'] for line in stored['lines']] == ['DAP 50kg', 'Urea 50kg']

        # committed sessions are closed
        assert client.get(f'/compose/sessions/{sid}').status_code == 404

    def test_sub_cent_price_commits_through_local_store(self, client, sid, backend, gateway):
        def store_locally(payload):
            return sales_order_service.create_sales_order(payload, get_session()).id

        backend.create_sales_order = store_locally
        gateway.pricing[(100, 10, 500)] = Pricing(Decimal('10.125'), Decimal('0'), 1)
        stage(client, sid, pack_count=90)

        response = client.post(f'/compose/sessions/{sid}/commit')

        assert response.status_code == 201
        assert response.get_json()['data']['total'] == '911.25'
        assert gateway.orders[0]['lines'][0]['price_unit'] == 10.125
        stored = client.get('/sales/1').get_json()['data']
        assert stored['total'] == '911.25'
        assert stored['lines'][0]['price_unit'] == '10.125'

    def test_empty_order(self, client, sid, gateway):
        response = client.post(f'/compose/sessions/{sid}/commit')
        assert response.status_code == 422
        assert gateway.orders == []

    def test_rejected_order(self, client, sid, gateway):
        stage(client, sid)
        gateway.receipt = OrderReceipt(None, None)

        response = client.post(f'/compose/sessions/{sid}/commit')

        assert response.status_code == 502
        assert response.get_json()['code'] == 'order_rejected'
        data = client.get(f'/compose/sessions/{sid}').get_json()['data']
        assert data['state'] == 'commit_failed'
        assert len(data['lines']) == 1

    def test_erp_unreachable(self, client, sid, gateway):
        stage(client, sid)
        gateway.failures['post_order'] = NetworkError('Unable to reach /web/call-odoo-api')

        response = client.post(f'/compose/sessions/{sid}/commit')

        assert response.status_code == 502
        assert 'code' not in response.get_json()

    def test_partial_commit_then_retry(self, client, sid, backend, gateway):
        stage(client, sid)
        backend.failures['create_sales_order'] = NetworkError('Internal API down')

        response = client.post(f'/compose/sessions/{sid}/commit')

        assert response.status_code == 502
        body = response.get_json()
        assert body['code'] == 'partial_commit'
        assert body['order_id'] == 9001
        assert body['order_sequence'] == 'SO-9001'
        data = client.get(f'/compose/sessions/{sid}').get_json()['data']
        assert data['submitted'] == {'order_id': 9001, 'order_sequence': 'SO-9001'}

        assert draft(client, sid, 'policy', 10).status_code == 409

        del backend.failures['create_sales_order']
        response = client.post(f'/compose/sessions/{sid}/commit')

        assert response.status_code == 201
        assert response.get_json()['data']['order_sequence'] == 'SO-9001'
        assert len(gateway.orders) == 1


class TestWarehouseAssignment:

    def test_assign(self, client, backend, gateway):
        backend.stored[5] = StoredOrder(
            id=5, partner_id=100, policy_type='is_advance', territory_id=1,
            lines=(StoredOrderLine(500, 10, 700, 4, 4, Decimal('100'), Decimal('0')),),
        )

        response = client.post('/compose/orders/5/warehouse', json={
            'warehouse_id': 6, 'employee_id': 11, 'company_id': 1,
        })

        assert response.status_code == 200
        assert response.get_json()['data']['total'] == '400.00'
        assert gateway.orders[0]['warehouse_id'] == 6
        assert backend.assigned == [(5, 6, 9001, 'SO-9001')]

    def test_missing_parameters(self, client):
        response = client.post('/compose/orders/5/warehouse', json={'warehouse_id': 6})
        assert response.status_code == 400

    def test_unknown_order(self, client):
        response = client.post('/compose/orders/77/warehouse', json={
            'warehouse_id': 6, 'employee_id': 11, 'company_id': 1,
        })
        assert response.status_code == 404


class TestAppSurface:

    def test_metrics_exposes_commit_counter(self, client, sid):
        stage(client, sid)
        client.post(f'/compose/sessions/{sid}/commit')

        response = client.get('/metrics')

        assert response.status_code == 200
        assert b'sales_order_commits_total{kind="compose",outcome="committed"}' in response.data
        assert b'compose_sessions_open ' in response.data

    def test_unknown_route_is_json(self, client):
        response = client.get('/nowhere')
        assert response.status_code == 404
        assert response.get_json()['status'] == 'error'

    def test_list_sales_orders_command(self, app):
        result = app.test_cli_runner().invoke(args=['list-sales-orders'])
        assert result.exit_code == 0
        assert 'No sales orders.' in result.output
