"""Sales blueprint - JSON API of the local sales order store."""
from flask import Blueprint, request, jsonify, current_app

from fieldsales.database import get_session
from fieldsales.exceptions import BusinessLogicError
from fieldsales.services import sales_order_service

sales_bp = Blueprint('sales', __name__, url_prefix='/sales')


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BusinessLogicError('Request body must be a JSON object')
    return data


@sales_bp.route('', methods=['POST'])
def create():
    """Store an order the ERP accepted (phase 2 of a commit)."""
    db_session = get_session()
    order = sales_order_service.create_sales_order(_json_body(), db_session)
    current_app.logger.info(f"Sales order #{order.id} created for partner {order.partner_id}")
    return jsonify({'data': order.to_dict()}), 201


@sales_bp.route('', methods=['GET'])
def list_orders():
    """All orders, newest first. Optional ?status= filter."""
    db_session = get_session()
    orders = sales_order_service.list_sales_orders(db_session, status=request.args.get('status'))
    return jsonify({'data': [order.to_dict() for order in orders]})


@sales_bp.route('/<int:sales_order_id>', methods=['GET'])
def detail(sales_order_id):
    db_session = get_session()
    order = sales_order_service.get_sales_order(sales_order_id, db_session)
    return jsonify({'data': order.to_dict()})


@sales_bp.route('/<int:sales_order_id>/warehouse', methods=['PUT'])
def assign_warehouse(sales_order_id):
    db_session = get_session()
    order = sales_order_service.assign_warehouse(sales_order_id, _json_body(), db_session)
    return jsonify({'data': order.to_dict()})


@sales_bp.route('/cancel', methods=['DELETE'])
def cancel():
    """Cancel by ERP order id (?orderId=); quotations only."""
    try:
        order_id = int(request.args.get('orderId', ''))
    except ValueError:
        raise BusinessLogicError('orderId is required')

    db_session = get_session()
    order = sales_order_service.cancel_sales_order(order_id, db_session)
    current_app.logger.info(f"Sales order {order.order_sequence} cancelled")
    return jsonify({'data': order.to_dict(), 'message': 'Order cancelled successfully'})
