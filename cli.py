# Command line entry points for the trading desk
import asyncio
import click

from app.main import main as run_app


@click.group()
def cli():
    """Threshold Desk CLI"""
    pass


@cli.command()
@click.option("--host", default=None, help="Bind address (defaults to API__HOST)")
@click.option("--port", default=None, type=int, help="Port (defaults to API__PORT)")
def api(host, port):
    """Run the API server together with the desk"""
    click.echo("Starting Threshold Desk API server...")
    from api.main import run as run_api
    run_api(host=host, port=port)


@cli.command()
def run():
    """Run the desk headless (market feed, live trading, scheduler; no HTTP)"""
    click.echo("Starting Threshold Desk...")
    asyncio.run(run_app())


@cli.group()
def accounts():
    """Inspect the brokerage account file"""
    pass


def _registry():
    from app.containers import AppContainer
    from core.logging import configure_logging

    container = AppContainer()
    configure_logging(container.settings())
    return container.account_registry()


@accounts.command("list")
def list_accounts():
    """List accounts (secrets are never printed)"""
    views = _registry().list_accounts()
    if not views:
        click.echo("No accounts configured.")
        return
    for view in views:
        status = "enabled" if view.enabled else "disabled"
        creds = "ready" if view.has_credentials else "needs login"
        click.echo(f"{view.id}  {view.name:<24} {status:<9} {creds}")


@accounts.command("add")
@click.option("--name", required=True)
@click.option("--api-key", required=True)
@click.option("--api-secret", prompt=True, hide_input=True)
def add_account(name, api_key, api_secret):
    """Add an account; complete the Zerodha login to obtain its access token"""
    account = _registry().add_account({"name": name, "api_key": api_key, "api_secret": api_secret})
    click.echo(f"Added {account.id} ({account.name})")


if __name__ == "__main__":
    cli()
