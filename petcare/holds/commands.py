import click
from flask import current_app
from flask.cli import AppGroup

holds_cli = AppGroup('holds', help='Booking hold maintenance.')


@holds_cli.command('sweep')
def sweep():
    """Delete booking holds whose expiry has passed."""
    count = current_app.extensions['scheduling'].sweep_expired_holds()
    click.echo(f'Swept {count} expired hold(s)')
