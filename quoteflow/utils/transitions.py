"""
Explicit status transition tables.

Each table maps (current status, action) -> next status. Anything not in the
table is illegal and raises IllegalTransitionError naming both states.
"""
from quoteflow.exceptions import IllegalTransitionError


# Quote: draft -> open -> closed; cancel from open or closed.
QUOTE_TRANSITIONS = {
    ('draft', 'open'): 'open',
    ('open', 'close'): 'closed',
    ('open', 'cancel'): 'cancelled',
    ('closed', 'cancel'): 'cancelled',
}

# Purchase order: actions are the target status itself.
PURCHASE_ORDER_TRANSITIONS = {
    ('draft', 'sent'): 'sent',
    ('sent', 'confirmed'): 'confirmed',
    ('confirmed', 'delivered'): 'delivered',
    ('draft', 'cancelled'): 'cancelled',
    ('sent', 'cancelled'): 'cancelled',
}


def next_status(table: dict, entity: str, current: str, action: str) -> str:
    """
    Resolve a transition or raise.

    Args:
        table: One of the *_TRANSITIONS dicts
        entity: Label used in the error ('quote', 'purchase_order')
        current: Current status value
        action: Requested action (or target status)
    """
    try:
        return table[(current, action)]
    except KeyError:
        raise IllegalTransitionError(entity, current, action) from None


def allowed_actions(table: dict, current: str) -> list:
    """Actions available from the given status (for API payloads)."""
    return [action for (status, action) in table if status == current]
