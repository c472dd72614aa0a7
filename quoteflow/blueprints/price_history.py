"""Price history blueprint: winning prices recorded at quote closure (read-only)."""
from flask import Blueprint, request, jsonify, g
from quoteflow.database import get_session
from quoteflow.services.snapshot_service import get_price_history, serialize_price_entry
from quoteflow.decorators.permissions import require_permission
from quoteflow.utils.number_format import parse_int

price_history_bp = Blueprint('price_history', __name__, url_prefix='/price-history')


@price_history_bp.route('/', methods=['GET'])
@require_permission('view_price_history')
def list_entries():
    """Filter by ?product_id= and/or ?supplier_id=. Newest first."""
    entries = get_price_history(
        get_session(), g.tenant_id,
        product_id=parse_int(request.args.get('product_id'), field='product_id'),
        supplier_id=parse_int(request.args.get('supplier_id'), field='supplier_id'),
        limit=min(parse_int(request.args.get('limit'), field='limit') or 100, 500),
        offset=parse_int(request.args.get('offset'), field='offset') or 0
    )
    return jsonify({'entries': [serialize_price_entry(e) for e in entries]})
