"""Purchase orders blueprint - Multi-Tenant JSON API."""
from flask import Blueprint, request, jsonify, g
from quoteflow.database import get_session
from quoteflow.models import PurchaseOrderStatus
from quoteflow.services import purchase_order_service as po_service
from quoteflow.decorators.permissions import require_permission
from quoteflow.exceptions import ValidationError
from quoteflow.utils.number_format import parse_int

purchase_orders_bp = Blueprint('purchase_orders', __name__, url_prefix='/purchase-orders')


def _payload():
    return request.get_json(silent=True) or {}


@purchase_orders_bp.route('/', methods=['GET'])
@require_permission('view_purchase_orders')
def list_purchase_orders():
    status = (request.args.get('status') or '').strip().lower() or None
    if status and status not in {s.value for s in PurchaseOrderStatus}:
        raise ValidationError(f'Estado desconocido: {status}', field='status')

    orders = po_service.list_purchase_orders(
        get_session(), g.tenant_id,
        status=status,
        quote_id=parse_int(request.args.get('quote_id'), field='quote_id'),
        supplier_id=parse_int(request.args.get('supplier_id'), field='supplier_id'),
        search=request.args.get('q'),
        limit=min(parse_int(request.args.get('limit'), field='limit') or 50, 200),
        offset=parse_int(request.args.get('offset'), field='offset') or 0
    )
    return jsonify({'purchase_orders': [po_service.serialize_purchase_order(po, include_items=False) for po in orders]})


@purchase_orders_bp.route('/from-quote/<int:quote_id>', methods=['POST'])
@require_permission('manage_purchase_orders')
def generate_from_quote(quote_id):
    """
    Generate draft orders from a closed quote.

    With supplier_id: one order for that supplier. Without it: one per
    winning supplier that has no order yet.
    """
    data = _payload()
    supplier_id = parse_int(data.get('supplier_id'), field='supplier_id')
    db_session = get_session()

    if supplier_id:
        po = po_service.generate_purchase_order(
            quote_id, supplier_id, db_session, g.tenant_id,
            delivery_address=data.get('delivery_address'),
            payment_terms=data.get('payment_terms'),
            notes=data.get('notes'),
            user_id=g.user_id
        )
        orders = [po]
    else:
        orders = po_service.generate_purchase_orders_for_quote(quote_id, db_session, g.tenant_id, user_id=g.user_id)

    return jsonify({'purchase_orders': [po_service.serialize_purchase_order(po) for po in orders]}), 201


@purchase_orders_bp.route('/<int:po_id>', methods=['GET'])
@require_permission('view_purchase_orders')
def view_purchase_order(po_id):
    po = po_service.get_purchase_order(po_id, get_session(), g.tenant_id)
    return jsonify(po_service.serialize_purchase_order(po))


@purchase_orders_bp.route('/<int:po_id>', methods=['PATCH'])
@require_permission('manage_purchase_orders')
def update_purchase_order(po_id):
    data = _payload()
    db_session = get_session()

    header = {k: data[k] for k in po_service.HEADER_FIELDS if k in data}
    if header:
        po_service.update_purchase_order(po_id, db_session, g.tenant_id, user_id=g.user_id, **header)
    if 'tax_amount' in data or 'shipping_cost' in data:
        po_service.update_purchase_order_charges(
            po_id, db_session, g.tenant_id,
            tax_amount=data.get('tax_amount'),
            shipping_cost=data.get('shipping_cost'),
            user_id=g.user_id
        )

    po = po_service.get_purchase_order(po_id, db_session, g.tenant_id)
    return jsonify(po_service.serialize_purchase_order(po))


@purchase_orders_bp.route('/<int:po_id>', methods=['DELETE'])
@require_permission('manage_purchase_orders')
def delete_purchase_order(po_id):
    po_service.delete_purchase_order(po_id, get_session(), g.tenant_id, user_id=g.user_id)
    return jsonify({'status': 'ok'})


@purchase_orders_bp.route('/<int:po_id>/status', methods=['POST'])
@require_permission('manage_purchase_orders')
def change_status(po_id):
    """Body: {"status": "sent" | "confirmed" | "delivered" | "cancelled"}."""
    data = _payload()
    new_status = (data.get('status') or '').strip().lower()
    if not new_status:
        raise ValidationError('El campo status es requerido', field='status')

    po = po_service.change_purchase_order_status(
        po_id, new_status, get_session(), g.tenant_id,
        user_id=g.user_id,
        notify_supplier=data.get('notify_supplier', True) is not False
    )
    return jsonify(po_service.serialize_purchase_order(po))


@purchase_orders_bp.route('/<int:po_id>/items', methods=['POST'])
@require_permission('manage_purchase_orders')
def add_item(po_id):
    data = _payload()
    item = po_service.add_purchase_order_item(
        po_id, get_session(), g.tenant_id,
        product_id=parse_int(data.get('product_id'), field='product_id', allow_none=False),
        qty=data.get('qty'),
        unit_price=data.get('unit_price'),
        package_id=parse_int(data.get('package_id'), field='package_id'),
        delivery_days=data.get('delivery_days'),
        notes=data.get('notes')
    )
    po = po_service.get_purchase_order(item.po_id, get_session(), g.tenant_id)
    return jsonify(po_service.serialize_purchase_order(po)), 201


@purchase_orders_bp.route('/items/<int:item_id>', methods=['PATCH'])
@require_permission('manage_purchase_orders')
def update_item(item_id):
    data = _payload()
    fields = {k: data[k] for k in ('qty', 'unit_price', 'delivery_days', 'notes') if k in data}
    item = po_service.update_purchase_order_item(item_id, get_session(), g.tenant_id, **fields)
    po = po_service.get_purchase_order(item.po_id, get_session(), g.tenant_id)
    return jsonify(po_service.serialize_purchase_order(po))


@purchase_orders_bp.route('/items/<int:item_id>', methods=['DELETE'])
@require_permission('manage_purchase_orders')
def remove_item(item_id):
    po = po_service.remove_purchase_order_item(item_id, get_session(), g.tenant_id)
    return jsonify(po_service.serialize_purchase_order(po))
