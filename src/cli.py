"""Click CLI for signing, inspecting and auditing LINE webhook deliveries."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from src.audit.logger import validate_audit_trail
from src.webhook.models import WebhookRequest
from src.webhook.parser import MalformedPayloadError, parse_events
from src.webhook.signature import AuthenticationError, SignatureVerifier, compute_signature


@click.group()
def cli() -> None:
    """LINE webhook bot utilities."""


@cli.command()
@click.argument("body_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--secret", envvar="LINE_CHANNEL_SECRET", required=True, help="Channel secret.")
def sign(body_file: str, secret: str) -> None:
    """Print the x-line-signature value for BODY_FILE."""
    click.echo(compute_signature(secret, Path(body_file).read_bytes()))


@cli.command()
@click.argument("body_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--secret", envvar="LINE_CHANNEL_SECRET", required=True, help="Channel secret.")
@click.option("--signature", required=True, help="Recorded x-line-signature header value.")
def parse(body_file: str, secret: str, signature: str) -> None:
    """Verify and parse BODY_FILE as a webhook delivery; print the events as JSON."""
    body = Path(body_file).read_bytes()
    try:
        verified = SignatureVerifier(secret).verify(WebhookRequest(body, signature))
    except AuthenticationError as exc:
        click.echo(f"Signature rejected: {exc.reason}", err=True)
        sys.exit(1)
    try:
        events = parse_events(verified)
    except MalformedPayloadError as exc:
        click.echo(str(exc), err=True)
        sys.exit(1)
    click.echo(json.dumps([e.model_dump(mode="json") for e in events], indent=2))


@cli.command("audit-verify")
@click.argument("log_file", type=click.Path(exists=True, dir_okay=False))
def audit_verify(log_file: str) -> None:
    """Validate the hash chain of an audit log and its rotated backups."""
    results = validate_audit_trail(Path(log_file))
    broken = {path: r for path, r in results.items() if not r.valid}
    for path, result in broken.items():
        click.echo(f"Audit chain broken in {path} at line {result.broken_at_line}", err=True)
    if broken:
        sys.exit(1)
    click.echo(f"Audit chain OK ({len(results)} file(s))")


if __name__ == "__main__":
    cli()
