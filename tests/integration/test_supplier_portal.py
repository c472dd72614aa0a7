"""
Public supplier portal: token-only access and refusal codes.
"""

from datetime import timedelta

from quoteflow.models import QuoteResponse
from quoteflow.services import quote_service


def test_unknown_token_is_404(client):
    resp = client.get('/supplier/quote/not-a-real-token')

    assert resp.status_code == 404
    assert resp.get_json()['code'] == 'invalid_token'


def test_view_does_not_need_a_session(client, open_quote):
    resp = client.get(f"/supplier/quote/{open_quote['token_a']}")

    assert resp.status_code == 200
    body = resp.get_json()
    assert body['supplier']['id'] == open_quote['supplier_a']
    assert body['invitation']['status'] == 'viewed'
    assert body['items'][0]['requested_qty'] == '10.000'


def test_save_then_overwrite(client, open_quote):
    url = f"/supplier/quote/{open_quote['token_a']}/responses/{open_quote['item_id']}"

    client.post(url, json={'price': '5,00', 'delivery_days': 2})
    resp = client.post(url, json={'price': '4.80', 'notes': 'precio final'})

    assert resp.status_code == 200
    response = resp.get_json()['response']
    assert response['price'] == '4.80'
    assert response['delivery_days'] is None
    assert response['notes'] == 'precio final'


def test_invalid_price_is_422(client, open_quote):
    url = f"/supplier/quote/{open_quote['token_a']}/responses/{open_quote['item_id']}"
    resp = client.post(url, json={'price': '-2'})

    assert resp.status_code == 422
    assert resp.get_json()['field'] == 'price'


def test_oversized_price_is_422(client, session, open_quote):
    url = f"/supplier/quote/{open_quote['token_a']}/responses/{open_quote['item_id']}"
    resp = client.post(url, json={'price': '1e30'})

    assert resp.status_code == 422
    assert resp.get_json()['field'] == 'price'
    assert session.query(QuoteResponse).count() == 0


def test_expired_quote_is_410(client, session, open_quote):
    quote = quote_service.get_quote(open_quote['quote_id'], session, open_quote['tenant_id'])
    quote.deadline = quote.deadline - timedelta(days=30)
    session.commit()

    resp = client.post(
        f"/supplier/quote/{open_quote['token_a']}/responses/{open_quote['item_id']}",
        json={'price': '5'}
    )
    assert resp.status_code == 410
    assert resp.get_json()['code'] == 'expired'


def test_closed_quote_is_410(client, session, open_quote):
    quote_service.close_quote(open_quote['quote_id'], session, open_quote['tenant_id'])

    resp = client.post(f"/supplier/quote/{open_quote['token_b']}/submit", json={})
    assert resp.status_code == 410
    assert resp.get_json()['code'] == 'closed'


def test_submitted_is_409(client, open_quote):
    base = f"/supplier/quote/{open_quote['token_a']}"
    assert client.post(f'{base}/submit', json={}).status_code == 200

    resp = client.post(f"{base}/responses/{open_quote['item_id']}", json={'price': '5'})
    assert resp.status_code == 409
    assert resp.get_json()['code'] == 'submitted'

    resp = client.post(f'{base}/submit', json={})
    assert resp.status_code == 409


def test_malformed_submission_is_422(client, open_quote):
    resp = client.post(f"/supplier/quote/{open_quote['token_a']}/submit", json={'responses': 'todo'})
    assert resp.status_code == 422


def test_portal_is_csrf_exempt(app, open_quote):
    app.config['WTF_CSRF_ENABLED'] = True
    try:
        client = app.test_client()
        resp = client.post(
            f"/supplier/quote/{open_quote['token_a']}/responses/{open_quote['item_id']}",
            json={'price': '5'}
        )
        assert resp.status_code == 200

        # The buyer API still requires the token
        resp = client.post('/quotes/', json={'title': 'x'})
        assert resp.status_code == 400
    finally:
        app.config['WTF_CSRF_ENABLED'] = False
