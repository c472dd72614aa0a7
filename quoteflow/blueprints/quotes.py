"""Quotes blueprint: buyer side of the settlement pipeline - Multi-Tenant JSON API."""
from flask import Blueprint, request, jsonify, g
from quoteflow.database import get_session
from quoteflow.models import QuoteStatus
from quoteflow.services import quote_service, invitation_service, winner_service, snapshot_service
from quoteflow.services.audit_service import get_audit_logs, serialize_audit_log
from quoteflow.services.supplier_response_service import serialize_response
from quoteflow.blueprints.metrics import invitation_emails_total
from quoteflow.decorators.permissions import require_permission
from quoteflow.exceptions import ValidationError
from quoteflow.utils.number_format import parse_int

quotes_bp = Blueprint('quotes', __name__, url_prefix='/quotes')


def _payload():
    return request.get_json(silent=True) or {}


def _pagination(default_limit=50):
    limit = parse_int(request.args.get('limit'), field='limit') or default_limit
    offset = parse_int(request.args.get('offset'), field='offset') or 0
    return min(limit, 200), offset


def _required_id(data, field):
    value = parse_int(data.get(field), field=field, allow_none=False)
    if value == 0:
        raise ValidationError(f'El campo {field} es requerido', field=field)
    return value


# ----------------------------------------------------------------------------
# Drafting
# ----------------------------------------------------------------------------

@quotes_bp.route('/', methods=['GET'])
@require_permission('view_quotes')
def list_quotes():
    """List quotes with filters (tenant-scoped)."""
    status = (request.args.get('status') or '').strip().lower() or None
    if status and status not in {s.value for s in QuoteStatus}:
        raise ValidationError(f'Estado desconocido: {status}', field='status')
    limit, offset = _pagination()

    quotes = quote_service.list_quotes(
        get_session(), g.tenant_id,
        status=status,
        search=request.args.get('q'),
        limit=limit,
        offset=offset
    )
    return jsonify({'quotes': [quote_service.serialize_quote(q, include_items=False) for q in quotes]})


@quotes_bp.route('/', methods=['POST'])
@require_permission('manage_quotes')
def create_quote():
    data = _payload()
    quote = quote_service.create_quote(
        get_session(), g.tenant_id,
        title=data.get('title'),
        description=data.get('description'),
        deadline=data.get('deadline'),
        user_id=g.user_id
    )
    return jsonify(quote_service.serialize_quote(quote)), 201


@quotes_bp.route('/<int:quote_id>', methods=['GET'])
@require_permission('view_quotes')
def view_quote(quote_id):
    quote = quote_service.get_quote(quote_id, get_session(), g.tenant_id)
    data = quote_service.serialize_quote(quote)
    data['invitations'] = [invitation_service.serialize_invitation(inv) for inv in quote.invitations]
    return jsonify(data)


@quotes_bp.route('/<int:quote_id>', methods=['PATCH'])
@require_permission('manage_quotes')
def update_quote(quote_id):
    data = _payload()
    fields = {k: data[k] for k in ('title', 'description', 'deadline') if k in data}
    quote = quote_service.update_quote(quote_id, get_session(), g.tenant_id, user_id=g.user_id, **fields)
    return jsonify(quote_service.serialize_quote(quote))


@quotes_bp.route('/<int:quote_id>', methods=['DELETE'])
@require_permission('manage_quotes')
def delete_quote(quote_id):
    quote_service.delete_quote(quote_id, get_session(), g.tenant_id, user_id=g.user_id)
    return jsonify({'status': 'ok'})


@quotes_bp.route('/<int:quote_id>/duplicate', methods=['POST'])
@require_permission('manage_quotes')
def duplicate_quote(quote_id):
    copy = quote_service.duplicate_quote(quote_id, get_session(), g.tenant_id, user_id=g.user_id)
    return jsonify(quote_service.serialize_quote(copy)), 201


@quotes_bp.route('/<int:quote_id>/items', methods=['POST'])
@require_permission('manage_quotes')
def add_item(quote_id):
    data = _payload()
    item = quote_service.add_quote_item(
        quote_id, get_session(), g.tenant_id,
        product_id=_required_id(data, 'product_id'),
        requested_qty=data.get('requested_qty'),
        package_id=parse_int(data.get('package_id'), field='package_id'),
        notes=data.get('notes'),
        sort_order=parse_int(data.get('sort_order'), field='sort_order')
    )
    return jsonify(quote_service.serialize_item(item)), 201


@quotes_bp.route('/items/<int:item_id>', methods=['PATCH'])
@require_permission('manage_quotes')
def update_item(item_id):
    data = _payload()
    fields = {}
    if 'requested_qty' in data:
        fields['requested_qty'] = data['requested_qty']
    if 'package_id' in data:
        fields['package_id'] = parse_int(data['package_id'], field='package_id')
    if 'notes' in data:
        fields['notes'] = data['notes']
    if 'sort_order' in data:
        fields['sort_order'] = parse_int(data['sort_order'], field='sort_order')
    item = quote_service.update_quote_item(item_id, get_session(), g.tenant_id, **fields)
    return jsonify(quote_service.serialize_item(item))


@quotes_bp.route('/items/<int:item_id>', methods=['DELETE'])
@require_permission('manage_quotes')
def remove_item(item_id):
    quote_service.remove_quote_item(item_id, get_session(), g.tenant_id)
    return jsonify({'status': 'ok'})


# ----------------------------------------------------------------------------
# Invitations
# ----------------------------------------------------------------------------

@quotes_bp.route('/<int:quote_id>/invitations', methods=['GET'])
@require_permission('view_quotes')
def list_invitations(quote_id):
    invitations = invitation_service.list_invitations(quote_id, get_session(), g.tenant_id)
    return jsonify({'invitations': [
        invitation_service.serialize_invitation(inv, include_link=True) for inv in invitations
    ]})


@quotes_bp.route('/<int:quote_id>/invitations', methods=['POST'])
@require_permission('manage_quotes')
def invite_supplier(quote_id):
    """Invite a supplier. On an already open quote the supplier is e-mailed right away."""
    data = _payload()
    invitation, created = invitation_service.issue_invitation(
        quote_id, _required_id(data, 'supplier_id'), get_session(), g.tenant_id
    )

    result = None
    if created and invitation.quote.status == QuoteStatus.OPEN.value:
        result = invitation_service.send_invitation_notice(invitation)
        invitation_emails_total.labels(result=result).inc()

    body = invitation_service.serialize_invitation(invitation, include_link=True)
    body['created'] = created
    body['email'] = result
    return jsonify(body), 201 if created else 200


@quotes_bp.route('/invitations/<int:invitation_id>', methods=['DELETE'])
@require_permission('manage_quotes')
def revoke_invitation(invitation_id):
    invitation_service.revoke_invitation(invitation_id, get_session(), g.tenant_id)
    return jsonify({'status': 'ok'})


# ----------------------------------------------------------------------------
# State machine
# ----------------------------------------------------------------------------

@quotes_bp.route('/<int:quote_id>/open', methods=['POST'])
@require_permission('manage_quotes')
def open_quote(quote_id):
    """Open the quote and e-mail every invited supplier. Delivery failures are reported, not raised."""
    db_session = get_session()
    report = quote_service.open_quote(quote_id, db_session, g.tenant_id, user_id=g.user_id)
    quote = quote_service.get_quote(quote_id, db_session, g.tenant_id)
    return jsonify({'quote': quote_service.serialize_quote(quote, include_items=False), 'emails': report})


@quotes_bp.route('/<int:quote_id>/close', methods=['POST'])
@require_permission('close_quotes')
def close_quote(quote_id):
    quote = quote_service.close_quote(quote_id, get_session(), g.tenant_id, user_id=g.user_id)
    return jsonify(quote_service.serialize_quote(quote, include_items=False))


@quotes_bp.route('/<int:quote_id>/cancel', methods=['POST'])
@require_permission('close_quotes')
def cancel_quote(quote_id):
    quote = quote_service.cancel_quote(quote_id, get_session(), g.tenant_id, user_id=g.user_id)
    return jsonify(quote_service.serialize_quote(quote, include_items=False))


# ----------------------------------------------------------------------------
# Winners
# ----------------------------------------------------------------------------

@quotes_bp.route('/items/<int:item_id>/responses', methods=['GET'])
@require_permission('view_quotes')
def item_responses(item_id):
    item, responses = winner_service.item_responses(item_id, get_session(), g.tenant_id)
    return jsonify({
        'item': quote_service.serialize_item(item),
        'responses': [serialize_response(r) for r in responses],
    })


@quotes_bp.route('/<int:quote_id>/winners/auto', methods=['POST'])
@require_permission('select_winners')
def auto_select_winners(quote_id):
    data = _payload()
    resolved = winner_service.auto_select_winners(
        quote_id, get_session(), g.tenant_id,
        user_id=g.user_id,
        tie_break=data.get('tie_break')
    )
    return jsonify({'resolved': resolved})


@quotes_bp.route('/<int:quote_id>/winners', methods=['GET'])
@require_permission('view_quotes')
def winners_summary(quote_id):
    summary = winner_service.winners_summary(
        quote_id, get_session(), g.tenant_id, baseline=request.args.get('baseline')
    )
    for key in ('total_value', 'baseline_value', 'savings', 'savings_pct'):
        summary[key] = str(summary[key])
    for supplier in summary['suppliers']:
        supplier['total'] = str(supplier['total'])
    return jsonify(summary)


@quotes_bp.route('/items/<int:item_id>/winner', methods=['PUT'])
@require_permission('select_winners')
def set_winner(item_id):
    data = _payload()
    item = winner_service.set_winner_manually(
        item_id,
        _required_id(data, 'supplier_id'),
        _required_id(data, 'response_id'),
        get_session(), g.tenant_id,
        reason=data.get('reason'),
        user_id=g.user_id
    )
    return jsonify(quote_service.serialize_item(item))


@quotes_bp.route('/items/<int:item_id>/winner', methods=['DELETE'])
@require_permission('select_winners')
def clear_winner(item_id):
    item = winner_service.clear_winner(item_id, get_session(), g.tenant_id, user_id=g.user_id)
    return jsonify(quote_service.serialize_item(item))


# ----------------------------------------------------------------------------
# Closure record
# ----------------------------------------------------------------------------

@quotes_bp.route('/<int:quote_id>/snapshot', methods=['GET'])
@require_permission('view_quotes')
def view_snapshot(quote_id):
    snapshot = snapshot_service.get_snapshot(quote_id, get_session(), g.tenant_id)
    return jsonify(snapshot_service.serialize_snapshot(snapshot))


@quotes_bp.route('/<int:quote_id>/history', methods=['GET'])
@require_permission('view_quotes')
def quote_history(quote_id):
    db_session = get_session()
    quote_service.get_quote(quote_id, db_session, g.tenant_id)
    limit, offset = _pagination(default_limit=100)
    entries = get_audit_logs(
        db_session, g.tenant_id,
        limit=limit, offset=offset,
        resource_type_filter='quote',
        resource_id_filter=quote_id
    )
    return jsonify({'history': [serialize_audit_log(e) for e in entries]})
