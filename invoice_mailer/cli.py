"""
CLI interface for Invoice Mailer.

Commands:
    send           — Send matched invoices to their recipients via Microsoft Graph
    dry-run        — Run the full matching pipeline without sending anything
    check          — List detected invoices and their recipients (no sign-in)
    verify-config  — Report configuration problems
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click

from invoice_mailer import __version__
from invoice_mailer.dispatch.config import MailerConfig, load_config
from invoice_mailer.dispatch.outcomes import DispatchOutcome, OutcomeStatus, RunMode
from invoice_mailer.dispatch.runner import DispatchRunner
from invoice_mailer.errors import AuthenticationError, ConfigError
from invoice_mailer.filers.graph_sender import GraphMailSender
from invoice_mailer.filers.message import MessageComposer
from invoice_mailer.logsink import LogSink, configure_logging

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_AUTH_FAILED = 2


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.version_option(version=__version__, prog_name="invoice-mailer")
@click.option("--config", "config_path", default="invoice_mailer.json", show_default=True,
              help="Path to the JSON configuration file.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option("--log-file", default=None, help="Also write diagnostics to this file.")
@click.pass_context
def cli(ctx: click.Context, config_path: str, verbose: bool, log_file: Optional[str]) -> None:
    """Invoice Mailer — match invoice files to recipients and email them via Microsoft Graph."""
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e))
    configure_logging(verbose=verbose, log_file=log_file or config.log_file)
    ctx.obj["config"] = config


def _validate_sender(ctx: click.Context, param: click.Parameter, value: Optional[str]) -> Optional[str]:
    if value is not None and "@" not in value:
        raise click.BadParameter("Sender must be an email address (must contain '@').")
    return value


def _run_options(func):
    func = click.option("--sender", default=None, callback=_validate_sender,
                        help="From address for this run (overrides the signed-in user).")(func)
    func = click.option("--recipients", "-r", default=None,
                        help="Override the recipients CSV/Excel file path.")(func)
    func = click.option("--invoices", "-i", default=None,
                        help="Override the invoices folder path.")(func)
    return func


# ---------------------------------------------------------------------------
# send / dry-run
# ---------------------------------------------------------------------------

@cli.command()
@_run_options
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def send(
    ctx: click.Context,
    invoices: Optional[str],
    recipients: Optional[str],
    sender: Optional[str],
    yes: bool,
) -> None:
    """Send matched invoices to their recipients."""
    config: MailerConfig = ctx.obj["config"]
    if config.test_mode:
        click.echo("Test mode is enabled: invoices go to the simulated sender, nothing is emailed.")
        ctx.exit(_execute(config, RunMode.DRY_RUN, invoices, recipients, sender))

    identity_problems = config.identity_problems()
    if identity_problems:
        for problem in identity_problems:
            click.echo(f"Error: {problem}", err=True)
        click.echo("Run 'invoice-mailer verify-config' or use 'dry-run'.", err=True)
        ctx.exit(EXIT_AUTH_FAILED)

    if not yes:
        click.confirm("This will send actual emails to recipients. Continue?", abort=True)

    ctx.exit(_execute(config, RunMode.REAL_SEND, invoices, recipients, sender))


@cli.command(name="dry-run")
@_run_options
@click.pass_context
def dry_run(
    ctx: click.Context,
    invoices: Optional[str],
    recipients: Optional[str],
    sender: Optional[str],
) -> None:
    """Run the full pipeline with a simulated sender; nothing is transmitted."""
    ctx.exit(_execute(ctx.obj["config"], RunMode.DRY_RUN, invoices, recipients, sender))


def _execute(
    config: MailerConfig,
    mode: RunMode,
    invoices: Optional[str],
    recipients: Optional[str],
    sender: Optional[str],
) -> int:
    sink = LogSink()
    live_sender = GraphMailSender(config.graph, sink) if mode is RunMode.REAL_SEND else None
    runner = DispatchRunner(
        live_sender=live_sender,
        composer=MessageComposer(
            config.message.subject_template,
            config.message.body_template,
        ),
        sink=sink,
    )
    if config.default_sender:
        runner.sender_for(mode).set_sender_override(config.default_sender)

    try:
        result = runner.run(
            mode,
            folder=Path(invoices) if invoices else config.scanner.scan_path,
            recipients_path=Path(recipients) if recipients else config.recipients.path,
            sender_override=sender,
            pattern=config.scanner.pattern,
            case_insensitive=config.scanner.case_insensitive,
            sheet_name=config.recipients.sheet_name,
            on_outcome=_echo_outcome,
        )
    except AuthenticationError as e:
        click.echo(f"Error: {e}", err=True)
        return EXIT_AUTH_FAILED
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        return EXIT_FAILURES
    finally:
        if live_sender is not None:
            live_sender.close()

    click.echo()
    click.echo(result.summary())
    return EXIT_OK if result.success else EXIT_FAILURES


def _echo_outcome(outcome: DispatchOutcome) -> None:
    colors = {
        OutcomeStatus.SENT: "green",
        OutcomeStatus.SKIPPED: "yellow",
        OutcomeStatus.FAILED: "red",
    }
    label = click.style(f"{outcome.status.value.upper():7s}", fg=colors[outcome.status])
    line = f"{label} {outcome.key or '(no key)'} -> {outcome.recipient or '-'}"
    if outcome.status is not OutcomeStatus.SENT and outcome.detail:
        line += f" ({outcome.detail})"
    click.echo(line)


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--invoices", "-i", default=None, help="Override the invoices folder path.")
@click.option("--recipients", "-r", default=None, help="Override the recipients file path.")
@click.pass_context
def check(ctx: click.Context, invoices: Optional[str], recipients: Optional[str]) -> None:
    """List detected invoice files and the recipient each resolves to."""
    config: MailerConfig = ctx.obj["config"]
    runner = DispatchRunner(sink=LogSink())
    try:
        rows = runner.preview(
            folder=Path(invoices) if invoices else config.scanner.scan_path,
            recipients_path=Path(recipients) if recipients else config.recipients.path,
            pattern=config.scanner.pattern,
            case_insensitive=config.scanner.case_insensitive,
            sheet_name=config.recipients.sheet_name,
        )
    except ValueError as e:
        raise click.ClickException(str(e))

    if not rows:
        click.echo("\nNo invoice files with valid keys were found.\n")
        return

    click.echo("\n--- Detected Invoice Files ---")
    missing = 0
    for row in rows:
        recipient = row.recipient or "NO RECIPIENT FOUND"
        if row.recipient is None:
            missing += 1
        click.echo(
            f"Invoice: {row.candidate.key} - File: {row.candidate.file_name} - Recipient: {recipient}"
        )
    click.echo()
    if missing:
        ctx.exit(EXIT_FAILURES)


# ---------------------------------------------------------------------------
# verify-config
# ---------------------------------------------------------------------------

@cli.command(name="verify-config")
@click.option("--create-folders", is_flag=True, help="Create the invoices folder if it is missing.")
@click.pass_context
def verify_config(ctx: click.Context, create_folders: bool) -> None:
    """Check that the configuration is complete and its paths exist."""
    config: MailerConfig = ctx.obj["config"]

    if create_folders and not config.scanner.scan_path.exists():
        config.scanner.scan_path.mkdir(parents=True, exist_ok=True)
        click.echo(f"Created invoices folder: {config.scanner.scan_path}")

    issues = config.problems()
    click.echo("=== Invoice Mailer Configuration ===")
    click.echo(f"Tenant ID:       {config.graph.tenant_id or 'N/A'}")
    click.echo(f"Client ID:       {config.graph.client_id or 'N/A'}")
    click.echo(f"Default sender:  {config.default_sender or '(signed-in user)'}")
    click.echo(f"Invoices folder: {config.scanner.scan_path}")
    click.echo(f"Key pattern:     {config.scanner.pattern}")
    click.echo(f"Recipients file: {config.recipients.path}")
    click.echo(f"Test mode:       {'on' if config.test_mode else 'off'}")

    if not issues:
        click.echo("\nConfiguration verification completed successfully.")
        return

    click.echo(f"\nProblems ({len(issues)}):")
    for issue in issues:
        click.echo(f"  - {issue}")
    ctx.exit(EXIT_FAILURES)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
