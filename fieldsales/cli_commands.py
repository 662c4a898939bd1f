"""
Flask CLI commands.

Commands:
- flask init-db: Create the local sales order tables
- flask list-sales-orders: Print stored sales orders, newest first
- flask erp-login: Check that an ERP session can be established
"""

import click
from flask import current_app
from fieldsales.database import create_all, get_session
from fieldsales.exceptions import FieldSalesError
from fieldsales.services.sales_order_service import list_sales_orders
from fieldsales.utils.formatters import money


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create tables for sales orders and their lines."""
        create_all()
        click.echo(click.style('Tables created.', fg='green'))

    @app.cli.command('list-sales-orders')
    @click.option('--status', default=None, help='Filter by status (sent, pending, cancelled)')
    @click.option('--limit', default=20, show_default=True, help='Maximum number of orders')
    def list_sales_orders_command(status, limit):
        """Print the newest stored sales orders."""
        orders = list_sales_orders(get_session(), status=status)[:limit]
        if not orders:
            click.echo('No sales orders.')
            return
        for order in orders:
            click.echo(
                f"#{order.id:<6} {order.order_sequence or '-':<14} {order.partner_name or order.partner_id!s:<30} "
                f"{order.policy_type_label:<14} {order.odoo_status:<12} {money(order.total)}"
            )

    @app.cli.command('erp-login')
    def erp_login_command():
        """Check that an ERP session can be established."""
        gateway = current_app.extensions['warehouse_assignment'].gateway
        try:
            gateway.authenticate()
        except FieldSalesError as e:
            click.echo(click.style(f'ERP login failed: {e.message}', fg='red'))
            raise SystemExit(1)
        click.echo(click.style(f'ERP session established via {gateway.api.base_url}', fg='green'))
