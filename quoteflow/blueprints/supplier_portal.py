"""
Public supplier portal.

No session, no tenant: the token in the URL is the supplier's only
credential. Routes are CSRF-exempt (registered in the app factory).
"""
import logging
from flask import Blueprint, request, jsonify
from quoteflow.database import get_session
from quoteflow.services import supplier_response_service
from quoteflow.exceptions import ValidationError

logger = logging.getLogger(__name__)

supplier_portal_bp = Blueprint('supplier_portal', __name__, url_prefix='/supplier/quote')


@supplier_portal_bp.route('/<token>', methods=['GET'])
def view(token):
    """Quote items and this supplier's own bids. Counts as a visit."""
    return jsonify(supplier_response_service.get_supplier_view(token, get_session()))


@supplier_portal_bp.route('/<token>/responses/<int:item_id>', methods=['POST'])
def save_response(token, item_id):
    """
    Save one bid. Refusals come back as 410 (closed, expired) or 409
    (already submitted) with a code the portal can show.
    """
    data = request.get_json(silent=True) or {}
    outcome = supplier_response_service.save_response(
        token, item_id, get_session(),
        price=data.get('price'),
        min_qty=data.get('min_qty'),
        delivery_days=data.get('delivery_days'),
        notes=data.get('notes'),
        pricing_tiers=data.get('pricing_tiers')
    )
    outcome.raise_for_refusal()
    return jsonify({
        'status': 'ok',
        'response': supplier_response_service.serialize_response(outcome.response),
    })


@supplier_portal_bp.route('/<token>/submit', methods=['POST'])
def submit(token):
    """Final submission. Optional 'responses' list is saved in the same transaction."""
    data = request.get_json(silent=True) or {}
    pending = data.get('responses') or []
    if not isinstance(pending, list) or not all(isinstance(entry, dict) for entry in pending):
        raise ValidationError('Formato de respuestas inválido', field='responses')

    invitation = supplier_response_service.submit_responses(token, get_session(), pending=pending)
    return jsonify({
        'status': 'ok',
        'submitted_at': invitation.submitted_at.isoformat(),
    })
