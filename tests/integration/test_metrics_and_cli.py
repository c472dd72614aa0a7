"""
Prometheus endpoint and Flask CLI commands.
"""

from datetime import timedelta

from quoteflow.models import Quote
from quoteflow.services import email_service


def test_metrics_endpoint_exposes_pipeline_counters(client, open_quote):
    client.get(f"/supplier/quote/{open_quote['token_a']}")
    client.post(f"/supplier/quote/{open_quote['token_a']}/responses/{open_quote['item_id']}", json={'price': '5'})

    resp = client.get('/metrics')

    assert resp.status_code == 200
    text = resp.get_data(as_text=True)
    assert 'http_requests_total' in text
    assert 'quote_transitions_total' in text
    assert 'supplier_response_writes_total{outcome="saved"}' in text
    assert 'invitation_emails_total' in text


def test_init_db_command(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['init-db'])

    assert result.exit_code == 0
    assert 'Tablas creadas' in result.output


def test_check_deadlines_command(app, session, open_quote, monkeypatch):
    sent = []
    monkeypatch.setattr(email_service, 'send_deadline_alert_email', lambda *args: sent.append(args) or True)
    runner = app.test_cli_runner()

    result = runner.invoke(args=['check-deadlines', '--window-hours', '1'])
    assert result.exit_code == 0
    assert 'Sin cotizaciones por vencer' in result.output

    result = runner.invoke(args=['check-deadlines', '--window-hours', str(24 * 8)])
    assert result.exit_code == 0
    assert '1 cotización(es) alertada(s)' in result.output
    assert len(sent) == 1

    assert session.get(Quote, open_quote['quote_id']).deadline_alert_sent is True


def test_check_deadlines_reports_failure(app, open_quote, monkeypatch):
    def boom(*args):
        raise RuntimeError('smtp caído')

    monkeypatch.setattr(email_service, 'send_deadline_alert_email', boom)
    result = app.test_cli_runner().invoke(args=['check-deadlines', '--window-hours', str(24 * 8)])

    assert result.exit_code == 1
    assert 'smtp caído' in result.output
