"""CLI entry point for personacore - operate the post-payment provisioning workflow."""

from __future__ import annotations

import json
import logging
import random
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

import click

from personacore.config import Settings
from personacore.errors import (
    ConfigurationError,
    FatalStepError,
    MalformedPayloadError,
    NameAllocationError,
)

# -- CLI group --------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="personacore")
@click.option("-v", "--verbose", is_flag=True, help="Log each workflow step")
def cli(verbose: bool):
    """Provision PersonaCore fans from payment notifications."""
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")


# -- replay ----------------------------------------------------------------------------


class _PrintMailer:
    """Mailer for dry runs: records messages instead of sending them."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    def send(self, to: str, subject: str, html: str) -> None:
        self.sent.append((to, subject))


@cli.command()
@click.argument("event_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--creator",
    "creators",
    multiple=True,
    metavar="SLUG=ID:NAME",
    help="Seed a creator into the in-memory store (repeatable)",
)
@click.option("--seed", type=int, default=None, help="Seed for username suffixes")
@click.option("--times", type=int, default=1, show_default=True, help="Deliver the event N times")
def replay(event_path, creators, seed, times):
    """Dry-run a notification JSON file through the workflow against an in-memory store.

    No signature check, no processor lookups and no email is sent.
    """
    from personacore.events import parse_event
    from personacore.memory_store import InMemoryStore
    from personacore.workflow import WorkflowContext, run_provisioning

    try:
        seeded = [_parse_creator(value) for value in creators]
    except click.BadParameter as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(2)

    raw = Path(event_path).read_bytes()
    try:
        event = parse_event(raw, allow_unsigned=True)
    except MalformedPayloadError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)

    store = InMemoryStore(seeded)
    mailer = _PrintMailer()
    ctx = WorkflowContext(
        settings=Settings(retry_backoff_seconds=0),
        store=store,
        link_issuer=store,
        mailer=mailer,
        rng=random.Random(seed),
        sleep=lambda _s: None,
    )

    for delivery in range(1, times + 1):
        try:
            result = run_provisioning(event, ctx)
        except FatalStepError as e:
            click.secho(f"Delivery {delivery}: {type(e).__name__}: {e}", fg="red", err=True)
            sys.exit(1)
        click.echo(f"Delivery {delivery}: {result.action} ({result.state.value})")
        if result.username:
            click.echo(f"  Username:     {result.username}")
        if result.subscription_id:
            click.echo(f"  Subscription: {result.subscription_id}")
        for failure in result.failures:
            click.secho(f"  Failed {failure.step}: {failure.message}", fg="yellow")

    click.echo(
        f"\nStore: {len(store.identities)} identities, {len(store.subscriptions)} subscriptions, "
        f"{len(store.conversations)} conversations, {len(store.payouts)} payouts, "
        f"{len(mailer.sent)} emails"
    )


def _parse_creator(value: str):
    from personacore.schema import Creator

    slug, sep, rest = value.partition("=")
    if not sep or not slug or not rest:
        raise click.BadParameter(f"Creator must look like SLUG=ID:NAME, got {value!r}")
    creator_id, _, name = rest.partition(":")
    return Creator(id=creator_id, name=name or slug, slug=slug)


# -- username --------------------------------------------------------------------------


@cli.command()
@click.argument("email")
@click.option("-n", "--count", type=int, default=1, show_default=True, help="How many to draw")
@click.option("--seed", type=int, default=None, help="Seed for username suffixes")
def username(email, count, seed):
    """Preview usernames allocated for EMAIL."""
    from personacore.usernames import allocate_username

    if "@" not in email:
        click.secho(f"Error: not an email address: {email}", fg="red", err=True)
        sys.exit(2)

    rng = random.Random(seed)
    taken: set[str] = set()
    for _ in range(count):
        try:
            name = allocate_username(email, taken.__contains__, rng=rng, exclude=taken)
        except NameAllocationError as e:
            click.secho(f"Error: {e}", fg="red", err=True)
            sys.exit(1)
        taken.add(name)
        click.echo(name)


# -- split -----------------------------------------------------------------------------


@cli.command()
@click.argument("amount")
@click.option("--share", default=None, help="Creator share (default: configured, 0.70)")
def split(amount, share):
    """Show the creator payout / platform commission split of AMOUNT."""
    from personacore.ledger import revenue_split

    try:
        gross = Decimal(amount)
        settings = Settings.from_env()
        creator_share = Decimal(share) if share is not None else settings.creator_share
        if not Decimal("0") < creator_share < Decimal("1"):
            raise ConfigurationError(f"share must be between 0 and 1, got {creator_share}")
    except (InvalidOperation, ConfigurationError) as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(2)

    payout, commission = revenue_split(gross, creator_share)
    summary = {
        "total": str(payout + commission),
        "payout": str(payout),
        "commission": str(commission),
    }
    click.echo(json.dumps(summary))
