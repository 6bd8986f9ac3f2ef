#!/usr/bin/env python3
"""
Tests for the command line entry point and the results summary.
"""

from unittest.mock import patch

import pytest

import gitopsboot
from core.models import (
    BootstrapContext,
    BootstrapOptions,
    BootstrapOutcome,
    CreatedRepositoryIdentity,
    OutcomeKind,
    StepResult,
    StepStatus,
)
from reporting import format_outcome, format_step_results, format_table


def test_options_from_args():
    args = gitopsboot.build_parser().parse_args([
        "--env", "staging",
        "--dev-git-url", "https://github.com/acme/dev.git",
        "--add", "a", "--add", "b", "--remove", "b",
        "--cluster", "mycluster",
        "--env-git-public",
        "--no-tls",
        "--batch-mode",
    ])

    options = gitopsboot.options_from_args(args)

    assert options.environment == "staging"
    assert options.dev_git_url == "https://github.com/acme/dev.git"
    assert options.batch_mode is True
    assert options.no_operator is False
    assert options.make_public is True
    assert options.flags.cluster_name == "mycluster"
    assert options.flags.tls_enabled is False
    assert options.flags.provider is None
    assert options.flags.add_apps == ["a", "b"]
    assert options.flags.remove_apps == ["b"]


def test_env_defaults_to_dev():
    options = gitopsboot.options_from_args(gitopsboot.build_parser().parse_args([]))

    assert options.environment == "dev"
    assert options.make_public is False
    assert BootstrapOptions().make_public is False


@pytest.fixture
def no_dotenv():
    with patch('gitopsboot.load_dotenv'):
        yield


def test_main_requires_a_token(no_dotenv, monkeypatch, capsys):
    monkeypatch.delenv("GIT_TOKEN", raising=False)
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)

    with patch('gitopsboot.BootstrapOrchestrator') as orchestrator:
        assert gitopsboot.main(["--batch-mode"]) == 1

    orchestrator.assert_not_called()
    assert "GIT_TOKEN" in capsys.readouterr().out


@pytest.mark.parametrize("kind,exit_code", [
    (OutcomeKind.COMPLETED, 0),
    (OutcomeKind.COMPLETED_NO_OPERATOR, 0),
    (OutcomeKind.DECLINED, 0),
    (OutcomeKind.FAILED, 1),
])
def test_main_maps_outcome_to_exit_code(no_dotenv, monkeypatch, capsys, kind, exit_code):
    monkeypatch.setenv("GIT_TOKEN", "ghp_abcdefghijklmnop")
    reason = "boom" if kind == OutcomeKind.FAILED else None
    outcome = BootstrapOutcome(kind, BootstrapContext(environment="dev"), reason=reason)

    with patch('gitopsboot.BootstrapOrchestrator') as orchestrator:
        orchestrator.return_value.run.return_value = outcome
        assert gitopsboot.main(["--batch-mode", "--no-operator"]) == exit_code

    assert orchestrator.call_args.kwargs["confirm"] is None
    out = capsys.readouterr().out
    assert "ghp_abcdefghijklmnop" not in out
    assert f"Outcome: {kind.value}" in out
    if exit_code:
        assert "Fatal error: boom" in out


def test_format_table():
    table = format_table(("A", "Long header"), [("x", None)])

    assert table.splitlines() == [
        "┌───┬─────────────┐",
        "│ A │ Long header │",
        "├───┼─────────────┤",
        "│ x │             │",
        "└───┴─────────────┘",
    ]
    with pytest.raises(ValueError):
        format_table(("A", "B"), [("only one",)])


def test_format_step_results_empty():
    assert "No steps run" in format_step_results([])


def test_format_outcome():
    context = BootstrapContext(environment="staging")
    context.steps.append(StepResult("publish repository", StepStatus.COMPLETED, "https://github.com/acme/env"))
    context.created_repository = CreatedRepositoryIdentity("acme", "env", link="https://github.com/acme/env")
    context.change_request_link = "https://github.com/acme/dev/pull/1"

    text = format_outcome(BootstrapOutcome(OutcomeKind.COMPLETED, context))

    assert "publish repository" in text
    assert "Outcome: completed" in text
    assert "Environment repository: https://github.com/acme/env" in text
    assert "Pull Request: https://github.com/acme/dev/pull/1" in text
