"""Unit tests for the nimbus destroy CLI command."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from nimbus.cli.commands.destroy import destroy
from nimbus.lib.errors import LockAcquisitionError
from nimbus.models.result import DestroyResult, ProvisionedResource
from nimbus.models.state import ResourceKind


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI runner."""
    return CliRunner()


@pytest.fixture
def destroy_result() -> DestroyResult:
    return DestroyResult(
        project="shop",
        stage="dev",
        region="us-east-1",
        destroyed=[
            ProvisionedResource(kind=ResourceKind.API, name="dev-shop"),
            ProvisionedResource(kind=ResourceKind.FUNCTION, name="dev-shop-get-users-id"),
        ],
        skipped=[ProvisionedResource(kind=ResourceKind.KV, name="dev-users")],
    )


class TestDestroyCommand:
    """Tests for the destroy command."""

    def test_project_required(self, runner: CliRunner) -> None:
        """--project is mandatory."""
        result = runner.invoke(destroy, [])

        assert result.exit_code == 2
        assert "--project" in result.output

    @patch("nimbus.deploy.engine.Nimbus")
    @patch("nimbus.cli.commands.destroy.setup_logging")
    def test_abort(
        self, mock_logging: MagicMock, mock_nimbus: MagicMock, runner: CliRunner
    ) -> None:
        """Declining the prompt exits cleanly without touching anything."""
        result = runner.invoke(destroy, ["--project", "shop"], input="n\n")

        assert result.exit_code == 0
        assert "Destroy aborted." in result.output
        mock_nimbus.assert_not_called()

    @patch("nimbus.deploy.engine.Nimbus")
    @patch("nimbus.cli.commands.destroy.setup_logging")
    def test_force_prompt_mentions_data(
        self, mock_logging: MagicMock, mock_nimbus: MagicMock, runner: CliRunner
    ) -> None:
        """The confirmation warns that data stores go too."""
        result = runner.invoke(destroy, ["--project", "shop", "--force"], input="n\n")

        assert "Data stores will be deleted too." in result.output

    @patch("nimbus.deploy.engine.Nimbus")
    @patch("nimbus.cli.commands.destroy.setup_logging")
    def test_yes_skips_prompt(
        self,
        mock_logging: MagicMock,
        mock_nimbus: MagicMock,
        runner: CliRunner,
        destroy_result: DestroyResult,
    ) -> None:
        """--yes destroys right away and lists deleted and kept resources."""
        mock_nimbus.return_value.destroy.return_value = destroy_result

        result = runner.invoke(
            destroy, ["--project", "shop", "--stage", "prod", "--region", "eu-west-1", "--yes"]
        )

        assert result.exit_code == 0, result.output
        mock_nimbus.assert_called_once_with("shop", stage="prod", region="eu-west-1")
        mock_nimbus.return_value.destroy.assert_called_once_with(force=False)
        assert "deleted  api" in result.output
        assert "kept     kv" in result.output
        assert "Re-run with --force" in result.output

    @patch("nimbus.deploy.engine.Nimbus")
    @patch("nimbus.cli.commands.destroy.setup_logging")
    def test_quiet(
        self,
        mock_logging: MagicMock,
        mock_nimbus: MagicMock,
        runner: CliRunner,
        destroy_result: DestroyResult,
    ) -> None:
        """Quiet mode prints counts only."""
        mock_nimbus.return_value.destroy.return_value = destroy_result

        result = runner.invoke(destroy, ["--project", "shop", "--yes", "--force", "-q"])

        assert result.output.strip() == "2 destroyed, 1 kept"
        mock_nimbus.return_value.destroy.assert_called_once_with(force=True)

    @patch("nimbus.deploy.engine.Nimbus")
    @patch("nimbus.cli.commands.destroy.setup_logging")
    def test_locked(
        self, mock_logging: MagicMock, mock_nimbus: MagicMock, runner: CliRunner
    ) -> None:
        """A held lock exits with 3 and points at nimbus unlock."""
        mock_nimbus.return_value.destroy.side_effect = LockAcquisitionError("shop.lock", 30)

        result = runner.invoke(destroy, ["--project", "shop", "--yes"])

        assert result.exit_code == 3
        assert "nimbus unlock" in result.output
