"""CLI tools for running and operating the intake worker."""

import asyncio

import click

from formflow.core.async_utils import run_async
from formflow.core.config import settings
from formflow.core.structured_logging import configure_logging
from formflow.db.session import init_db
from formflow.schemas.intake import OnboardingRequest
from formflow.services import workflow_service
from formflow.worker import build_worker, worker_loop


@click.group()
def cli():
    """Form intake worker tools."""
    configure_logging(settings.LOG_LEVEL)


def _echo_result(result) -> None:
    line = f"{result.submission_id}: {result.outcome.value}"
    if result.failed_stage:
        line += f" (stopped at {result.failed_stage.value}: {result.error})"
    click.echo(line)


@cli.command("init-db")
def init_db_command():
    """Create database tables."""
    init_db()
    click.echo("✓ Database tables created")


@cli.command()
def run():
    """Run the polling loop in the foreground."""
    init_db()
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        click.echo("Stopped")


@cli.command("poll-once")
def poll_once():
    """Poll every tracked form once and process new submissions."""
    init_db()
    worker = build_worker()
    results = run_async(worker.poller.poll_once())
    for result in results:
        _echo_result(result)
    click.echo(f"✓ Processed {len(results)} submissions")


@cli.command("test-submission")
@click.option("--email", required=True, help="Client email address")
@click.option("--name", required=True, help="Client name")
@click.option(
    "--form-type",
    type=click.Choice(["buyer", "seller"]),
    default="buyer",
    show_default=True,
)
def test_submission(email: str, name: str, form_type: str):
    """
    Run a synthetic submission through the full pipeline.

    Example:
        formflow test-submission --email jane@example.com --name "Jane Doe"
    """
    init_db()
    worker = build_worker()
    result = run_async(worker.pipeline.process_test_submission(email, name, form_type))
    _echo_result(result)


@cli.command("start-workflow")
@click.option("--email", required=True, help="Client email address")
@click.option("--name", required=True, help="Client name")
@click.option("--phone", default=None, help="Client phone")
@click.option(
    "--client-type",
    type=click.Choice(["buyer", "seller"]),
    default="buyer",
    show_default=True,
)
@click.option("--agent-id", default=None, help="Agent id (defaults to DEFAULT_AGENT_ID)")
def start_workflow(email: str, name: str, phone: str | None, client_type: str, agent_id: str | None):
    """Onboard a client and email them the intake form."""
    init_db()
    worker = build_worker()
    request = OnboardingRequest(
        email=email, name=name, phone=phone, client_type=client_type, agent_id=agent_id
    )
    with worker.session_factory() as db:
        result = run_async(workflow_service.start_client_workflow(db, worker.notifier, request))
        click.echo(f"✓ Client {result.client.id} onboarded, workflow {result.workflow.id}")
        click.echo(f"  Form URL: {result.form_url}")
        if not result.email_sent:
            click.echo("⚠ Form request email was not sent (see logs)")


@cli.command()
@click.option("--limit", default=50, show_default=True, help="Max dead letters to re-drive")
def redrive(limit: int):
    """Re-run open dead-lettered submissions through the pipeline."""
    init_db()
    worker = build_worker()
    results = run_async(worker.pipeline.redrive_failed_submissions(limit=limit))
    for result in results:
        _echo_result(result)
    click.echo(f"✓ Re-drove {len(results)} submissions")


if __name__ == "__main__":
    cli()
