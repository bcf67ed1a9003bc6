"""CLI tools for helpdesk administration."""

import click
from sqlalchemy.exc import IntegrityError

from helpdesk.core.errors import ExternalProviderError, HelpdeskError
from helpdesk.core.structured_logging import configure_logging
from helpdesk.db.session import SessionLocal
from helpdesk.services import directory_service, mail_poll_service


@click.group()
def cli():
    """Helpdesk CLI tools."""
    configure_logging()


@cli.command()
def seed_fallback():
    """
    Ensure the fallback organization exists.

    Example:
        helpdesk seed-fallback
    """
    db = SessionLocal()
    try:
        org = directory_service.get_fallback_organization(db)
        db.commit()
        click.echo(f"✓ Fallback organization: {org.name} (id={org.id})")
    finally:
        db.close()


@cli.command()
@click.option("--organization-id", required=True, type=int, help="Organization id")
@click.option("--domain", required=True, help="Email domain, e.g. acme.com")
def add_domain(organization_id: int, domain: str):
    """Map an email domain to an organization."""
    db = SessionLocal()
    try:
        row = directory_service.add_organization_domain(
            db, organization_id=organization_id, domain=domain
        )
        db.commit()
        click.echo(f"✓ {row.domain} -> organization {organization_id}")
    except HelpdeskError as e:
        db.rollback()
        raise click.ClickException(e.message)
    except IntegrityError:
        db.rollback()
        raise click.ClickException(f"Domain '{domain}' is already mapped")
    finally:
        db.close()


@cli.command()
@click.option(
    "--channel", required=True, type=click.Choice(sorted(mail_poll_service.CHANNEL_ALIASES))
)
def poll(channel: str):
    """Run one mail poll tick for a channel."""
    try:
        counts = mail_poll_service.run_poll_tick(mail_poll_service.parse_channel(channel))
    except ExternalProviderError as e:
        raise click.ClickException(e.message)
    if counts is None:
        click.echo("A poll for this channel is already running")
        return
    click.echo(", ".join(f"{key}={value}" for key, value in counts.items()))


if __name__ == "__main__":
    cli()
