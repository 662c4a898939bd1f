"""Compose blueprint - JSON API over in-memory order composition sessions."""
from flask import Blueprint, request, jsonify, current_app

from fieldsales.compose.types import OperatorProfile
from fieldsales.exceptions import BusinessLogicError, PartialCommitError

compose_bp = Blueprint('compose', __name__, url_prefix='/compose')


def _registry():
    return current_app.extensions['compose_sessions']


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BusinessLogicError('Request body must be a JSON object')
    return data


def _field_and_value():
    data = _json_body()
    if not data.get('field'):
        raise BusinessLogicError('"field" is required')
    return data['field'], data.get('value')


@compose_bp.route('/sessions', methods=['POST'])
def open_session():
    try:
        profile = OperatorProfile.from_dict(_json_body())
    except ValueError as e:
        raise BusinessLogicError(str(e))
    session = _registry().open(profile)
    return jsonify({'data': session.snapshot()}), 201


@compose_bp.route('/sessions/<session_id>', methods=['GET'])
def show_session(session_id):
    return jsonify({'data': _registry().get(session_id).snapshot()})


@compose_bp.route('/sessions/<session_id>', methods=['DELETE'])
def close_session(session_id):
    _registry().close(session_id)
    return jsonify({'message': 'Session closed'})


@compose_bp.route('/sessions/<session_id>/selection', methods=['PUT'])
def select(session_id):
    """Set a context field: territory, customer, delivery_address, policy_type or warehouse."""
    session = _registry().get(session_id)
    field, value = _field_and_value()
    session.select(field, value)
    return jsonify({'data': session.snapshot()})


@compose_bp.route('/sessions/<session_id>/draft', methods=['PUT'])
def set_draft_field(session_id):
    """Set a draft line field: policy, reference_policy, product, packaging or pack_count."""
    session = _registry().get(session_id)
    field, value = _field_and_value()
    session.set_field(field, value)
    return jsonify({'data': session.snapshot()})


@compose_bp.route('/sessions/<session_id>/lines', methods=['POST'])
def stage_line(session_id):
    session = _registry().get(session_id)
    line = session.stage()
    return jsonify({'data': session.snapshot(), 'line': line.to_dict()}), 201


@compose_bp.route('/sessions/<session_id>/lines/<line_id>', methods=['DELETE'])
def remove_line(session_id, line_id):
    session = _registry().get(session_id)
    session.remove_line(line_id)
    return jsonify({'data': session.snapshot()})


@compose_bp.route('/sessions/<session_id>/commit', methods=['POST'])
def commit(session_id):
    registry = _registry()
    session = registry.get(session_id)
    try:
        result = session.commit()
    except PartialCommitError as e:
        current_app.logger.error(
            f"Partial commit in session {session_id}: ERP order {e.order_sequence} (#{e.order_id}) "
            f"has no local record"
        )
        raise
    registry.close(session_id)
    return jsonify({'data': result.to_dict(), 'message': 'Order added successfully'}), 201


@compose_bp.route('/orders/<int:sales_order_id>/warehouse', methods=['POST'])
def assign_warehouse(sales_order_id):
    """Confirm a stored order in the ERP and record its warehouse."""
    data = _json_body()
    try:
        warehouse_id = int(data['warehouse_id'])
        employee_id = int(data['employee_id'])
        company_id = int(data['company_id'])
    except (KeyError, TypeError, ValueError):
        raise BusinessLogicError('warehouse_id, employee_id and company_id are required')

    orchestrator = current_app.extensions['warehouse_assignment']
    result = orchestrator.assign(sales_order_id, warehouse_id, employee_id, company_id)
    return jsonify({'data': result.to_dict(), 'message': 'Warehouse assigned successfully'})
