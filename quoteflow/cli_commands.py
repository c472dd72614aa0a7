"""
Flask CLI commands.

Commands:
- flask init-db: Create every table
- flask check-deadlines: E-mail buyers whose open quotes are about to expire
"""

import click
from quoteflow.database import db_session, create_all
from quoteflow.services.deadline_alert_service import send_deadline_alerts


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create the database tables."""
        create_all()
        click.echo(click.style('✅ Tablas creadas.', fg='green'))

    @app.cli.command('check-deadlines')
    @click.option('--window-hours', type=int, default=None,
                  help='Alert quotes whose deadline falls within this many hours (default: DEADLINE_ALERT_WINDOW_HOURS)')
    def check_deadlines(window_hours):
        """Send deadline alerts for open quotes (run from cron)."""
        try:
            alerted = send_deadline_alerts(db_session, window_hours=window_hours)
        except Exception as e:
            click.echo(click.style(f'❌ Error al enviar alertas: {e}', fg='red'))
            raise SystemExit(1)

        if alerted:
            click.echo(click.style(f'✅ {alerted} cotización(es) alertada(s).', fg='green'))
        else:
            click.echo('Sin cotizaciones por vencer.')
