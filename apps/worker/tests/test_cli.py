"""Tests for the worker CLI."""

from click.testing import CliRunner

from formflow.cli import cli


def test_init_db():
    result = CliRunner().invoke(cli, ["init-db"])

    assert result.exit_code == 0, result.output
    assert "Database tables created" in result.output


def test_test_submission_without_ai_key_degrades():
    result = CliRunner().invoke(
        cli, ["test-submission", "--email", "cli-buyer@example.com", "--name", "Cli Buyer"]
    )

    assert result.exit_code == 0, result.output
    assert "test_" in result.output
    assert "degraded (stopped at analysis" in result.output


def test_start_workflow_dry_run_email():
    result = CliRunner().invoke(
        cli,
        [
            "start-workflow",
            "--email",
            "cli-seller@example.com",
            "--name",
            "Cli Seller",
            "--client-type",
            "seller",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "onboarded" in result.output
    assert "Form URL: https://form.jotform.com/" in result.output
    assert "not sent" not in result.output


def test_start_workflow_rejects_unknown_client_type():
    result = CliRunner().invoke(
        cli, ["start-workflow", "--email", "x@example.com", "--name", "X", "--client-type", "landlord"]
    )

    assert result.exit_code != 0
