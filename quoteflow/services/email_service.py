"""
Email service for supplier invitations, deadline alerts and purchase orders.
Uses Flask-Mail for SMTP integration with UTF-8 support.
"""
import logging
from flask import current_app
from flask_mail import Mail, Message

from quoteflow.utils.formatters import money, datetime_label

logger = logging.getLogger(__name__)

mail = Mail()


def init_mail(app):
    """Initialize Flask-Mail with app."""
    mail.init_app(app)


def _mail_enabled() -> bool:
    """
    Check if mail is properly configured and enabled.
    Prevents 500 errors in dev or misconfigured environments.
    """
    cfg = current_app.config
    return bool(
        not cfg.get("MAIL_SUPPRESS_SEND", False)
        and cfg.get("MAIL_SERVER")
        and cfg.get("MAIL_USERNAME")
    )


def _business_name() -> str:
    return current_app.config.get('BUSINESS_NAME') or 'Compras'


def send_quote_invitation_email(
    to_email: str,
    supplier_name: str,
    quote_title: str,
    supplier_link: str,
    deadline=None
) -> bool:
    """
    Send the supplier its personal quote link.

    Args:
        to_email: Supplier address
        supplier_name: Supplier display name (may contain accents)
        quote_title: Quote title
        supplier_link: Public URL embedding the invitation token
        deadline: Optional naive-UTC deadline

    Returns:
        True if sent (or mail disabled), False on delivery failure
    """
    try:
        logger.info(f"[EMAIL] Preparando invitación de cotización para {to_email}")

        if not _mail_enabled():
            logger.warning(f"[MAIL DISABLED] Quote invitation skipped for {to_email}")
            return True

        business = _business_name()
        subject = f"Solicitud de cotización: {quote_title} - {business}"
        deadline_line = f"Fecha límite: {datetime_label(deadline)} (UTC)" if deadline else "Sin fecha límite"

        html_body = f"""
        <!DOCTYPE html>
        <html>
        <head><meta charset="UTF-8"></head>
        <body style="font-family: Arial, sans-serif; color: #333;">
            <div style="max-width: 600px; margin: auto; padding: 20px;">
                <h2>Solicitud de cotización</h2>
                <p>Hola <strong>{supplier_name}</strong>,</p>
                <p><strong>{business}</strong> te invita a cotizar <strong>{quote_title}</strong>.</p>
                <p>{deadline_line}</p>
                <div style="text-align:center;margin:30px 0;">
                    <a href="{supplier_link}"
                       style="padding: 12px 30px; background: #28a745; color: #fff; text-decoration: none; border-radius: 5px;">
                        Cargar precios
                    </a>
                </div>
                <p style="font-size: 13px; color: #666;">
                    Este enlace es personal. No lo compartas.
                </p>
            </div>
        </body>
        </html>
        """

        text_body = f"""
Hola {supplier_name},

{business} te invita a cotizar: {quote_title}
{deadline_line}

Cargá tus precios acá:
{supplier_link}

Este enlace es personal. No lo compartas.
"""

        msg = Message(
            subject=subject,
            recipients=[to_email],
            body=text_body,
            html=html_body,
        )
        mail.send(msg)
        logger.info(f"[EMAIL] ✓ Quote invitation sent to {to_email}")
        return True

    except Exception as e:
        logger.exception(f"[EMAIL] ✗ Error sending quote invitation to {to_email}: {e}")
        return False


def send_deadline_alert_email(to_email: str, quote_title: str, deadline, pending_suppliers: list) -> bool:
    try:
        if not _mail_enabled():
            logger.info(f"[MAIL DISABLED] Deadline alert skipped for {to_email}")
            return True

        pending = "".join(f"<li>{name}</li>" for name in pending_suppliers) or "<li>Todos respondieron</li>"
        html_body = f"""
        <h2>⏰ La cotización "{quote_title}" vence pronto</h2>
        <p>Fecha límite: {datetime_label(deadline)} (UTC)</p>
        <p>Proveedores sin enviar:</p>
        <ul>{pending}</ul>
        """

        msg = Message(
            subject=f"⏰ Vence la cotización {quote_title}",
            recipients=[to_email],
            html=html_body,
        )
        mail.send(msg)
        return True

    except Exception:
        logger.exception("[EMAIL] Error sending deadline alert")
        return False


def send_purchase_order_email(to_email: str, supplier_name: str, po_number: str, lines: list, total) -> bool:
    """
    Send a purchase order summary to the supplier once it is marked as sent.

    lines: list of dicts with product, qty, unit_price and total_price.
    """
    try:
        if not _mail_enabled():
            logger.info(f"[MAIL DISABLED] Purchase order {po_number} email skipped for {to_email}")
            return True

        rows = "".join(
            f"""
            <tr>
                <td>{line['product']}</td>
                <td align="center">{line['qty']}</td>
                <td align="right">${money(line['unit_price'])}</td>
                <td align="right">${money(line['total_price'])}</td>
            </tr>
            """
            for line in lines
        )

        html_body = f"""
        <h2>Orden de compra {po_number}</h2>
        <p>Hola <strong>{supplier_name}</strong>, te enviamos la orden de compra de {_business_name()}.</p>
        <table border="1" cellpadding="8" cellspacing="0" width="100%">
            <tr>
                <th>Producto</th>
                <th>Cantidad</th>
                <th>Precio Unit.</th>
                <th>Subtotal</th>
            </tr>
            {rows}
        </table>
        <p><strong>Total: ${money(total)}</strong></p>
        """

        msg = Message(
            subject=f"Orden de compra {po_number} - {_business_name()}",
            recipients=[to_email],
            html=html_body,
        )
        mail.send(msg)
        logger.info(f"[EMAIL] ✓ Purchase order {po_number} sent to {to_email}")
        return True

    except Exception:
        logger.exception(f"[EMAIL] Error sending purchase order {po_number}")
        return False
