"""
Guest engagement CLI - Command line interface for running the job.

Usage:
    engagement --help         Show all commands
    engagement run            Run the guest engagement job once
    engagement run-key        Print the current run key
"""

import asyncio
import json

import typer

app = typer.Typer(
    name="engagement",
    help="Guest engagement CLI - SMS reminders, review follow-ups and interest marketing",
    no_args_is_help=True,
)


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


@app.command()
def run():
    """Run the event guest engagement job once and print the JSON report."""
    from guest_engagement.jobs.engagement import main

    try:
        report = asyncio.run(main())
    except Exception as e:
        _print_error(f"Guest engagement run failed: {e}")
        raise typer.Exit(code=1) from e

    typer.echo(json.dumps(report.to_response(), indent=2))
    if report.aborted:
        raise typer.Exit(code=2)


@app.command("run-key")
def run_key():
    """Print the run key for the current 15-minute bucket."""
    from guest_engagement.services.run_ledger import make_run_key

    typer.echo(make_run_key())


if __name__ == "__main__":
    app()
