"""Tests for the command line interface."""

from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from local_tunnel_proxy import __version__
from local_tunnel_proxy.cli import ConsoleAnnouncer, main, run
from local_tunnel_proxy.common.exceptions import PreconditionFailure, RelayFailure
from local_tunnel_proxy.config import TargetAddress
from local_tunnel_proxy.tunnels import TunnelStatus


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def mock_run():
    with patch("local_tunnel_proxy.cli.run", return_value=0) as mocked:
        yield mocked


@pytest.fixture(autouse=True)
def mock_setup_logging():
    with patch("local_tunnel_proxy.cli.setup_logging") as mocked:
        yield mocked


class TestMain:
    """Test option parsing and config resolution."""

    def test_token_from_flag(self, runner, mock_run):
        result = runner.invoke(
            main, ["--port", "3000", "--ngrok-authtoken", "flag-token"], env={"NGROK_AUTHTOKEN": None}
        )

        assert result.exit_code == 0, result.output
        config = mock_run.call_args.args[0]
        assert config.auth_token == "flag-token"
        assert config.target == TargetAddress(host="localhost", port=3000)

    def test_token_falls_back_to_environment(self, runner, mock_run):
        result = runner.invoke(main, ["-p", "8080"], env={"NGROK_AUTHTOKEN": "env-token"})

        assert result.exit_code == 0, result.output
        assert mock_run.call_args.args[0].auth_token == "env-token"

    def test_flag_wins_over_environment(self, runner, mock_run):
        result = runner.invoke(
            main,
            ["-p", "8080", "--ngrok-authtoken", "flag-token"],
            env={"NGROK_AUTHTOKEN": "env-token"},
        )

        assert result.exit_code == 0, result.output
        assert mock_run.call_args.args[0].auth_token == "flag-token"

    def test_missing_token_is_a_usage_error(self, runner, mock_run):
        result = runner.invoke(main, ["-p", "3000"], env={"NGROK_AUTHTOKEN": None})

        assert result.exit_code == 2
        assert "Missing ngrok authtoken" in result.output
        assert "NGROK_AUTHTOKEN" in result.output
        mock_run.assert_not_called()

    def test_port_is_required(self, runner, mock_run):
        result = runner.invoke(main, [], env={"NGROK_AUTHTOKEN": "t"})

        assert result.exit_code == 2
        mock_run.assert_not_called()

    @pytest.mark.parametrize("port", ["0", "65536", "http"])
    def test_invalid_port_rejected(self, port, runner, mock_run):
        result = runner.invoke(main, ["-p", port], env={"NGROK_AUTHTOKEN": "t"})

        assert result.exit_code == 2
        mock_run.assert_not_called()

    def test_options_reach_config(self, runner, mock_run):
        result = runner.invoke(
            main,
            [
                "-p",
                "5173",
                "--host",
                "127.0.0.1",
                "--callback-path",
                "/auth/return",
                "--probe-timeout",
                "0.5",
                "--print-url-only",
            ],
            env={"NGROK_AUTHTOKEN": "t0ken"},
        )

        assert result.exit_code == 0, result.output
        config = mock_run.call_args.args[0]
        assert config.target.url == "http://127.0.0.1:5173"
        assert config.callback_path == "/auth/return"
        assert config.probe_timeout == 0.5
        assert config.print_url_only is True

    def test_invalid_callback_path(self, runner, mock_run):
        result = runner.invoke(
            main, ["-p", "3000", "--callback-path", "oauth"], env={"NGROK_AUTHTOKEN": "t"}
        )

        assert result.exit_code == 2
        assert "Callback path must start with '/'" in result.output
        mock_run.assert_not_called()

    def test_url_only_quiets_logging(self, runner, mock_run, mock_setup_logging):
        runner.invoke(
            main,
            ["-p", "3000", "--print-url-only", "--log-level", "DEBUG"],
            env={"NGROK_AUTHTOKEN": "t"},
        )

        assert mock_setup_logging.call_args.kwargs["level"] == "WARNING"

    def test_logging_options_are_passed(self, runner, mock_run, mock_setup_logging, tmp_path):
        log_file = tmp_path / "proxy.log"
        runner.invoke(
            main,
            ["-p", "3000", "--log-level", "debug", "--json-logs", "--log-file", str(log_file)],
            env={"NGROK_AUTHTOKEN": "t"},
        )

        mock_setup_logging.assert_called_once_with(
            level="DEBUG", json_format=True, log_file=str(log_file)
        )

    def test_exit_status_comes_from_run(self, runner, mock_run):
        mock_run.return_value = 1

        result = runner.invoke(main, ["-p", "3000"], env={"NGROK_AUTHTOKEN": "t"})

        assert result.exit_code == 1

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output


class TestRun:
    """Test translation of outcomes into exit statuses."""

    @pytest.fixture
    def config(self, make_config):
        return make_config(TargetAddress(host="127.0.0.1", port=3000))

    @pytest.fixture
    def mock_orchestrator(self):
        with patch("local_tunnel_proxy.cli.Orchestrator") as mocked:
            yield mocked.return_value

    def test_success_returns_zero(self, config, mock_orchestrator):
        mock_orchestrator.run = AsyncMock(return_value=0)

        assert run(config) == 0

    @pytest.mark.parametrize(
        "error",
        [
            PreconditionFailure("127.0.0.1", 3000, "connection refused"),
            RelayFailure(40000, "authentication failed"),
        ],
    )
    def test_startup_failure_returns_one(self, error, config, mock_orchestrator, capsys):
        mock_orchestrator.run = AsyncMock(side_effect=error)

        assert run(config) == 1

        assert f"Error: {error}" in capsys.readouterr().err

    def test_unexpected_error_returns_one(self, config, mock_orchestrator, capsys):
        mock_orchestrator.run = AsyncMock(side_effect=RuntimeError("surprise"))

        with patch("local_tunnel_proxy.cli.logger") as mock_logger:
            assert run(config) == 1

        mock_logger.exception.assert_called_once()
        assert "Error: surprise" in capsys.readouterr().err

    def test_status_events_reach_console(self, config):
        with patch("local_tunnel_proxy.cli.Orchestrator") as mocked:
            mocked.return_value.run = AsyncMock(return_value=0)
            run(config)

        provider = mocked.call_args.kwargs["tunnel_provider"]
        assert len(provider.status) == 1


class TestConsoleAnnouncer:
    """Test console output in both modes."""

    @pytest.fixture
    def config(self, make_config):
        return make_config(TargetAddress(host="localhost", port=3000))

    def test_running_prints_url_and_redirect_uri(self, config, capsys):
        ConsoleAnnouncer().running("https://abc.ngrok.app", config)

        out = capsys.readouterr().out
        assert "Public OAuth redirect base URL: https://abc.ngrok.app" in out
        assert "Forwarding to http://localhost:3000" in out
        assert "https://abc.ngrok.app/oauth/callback" in out

    def test_url_only_prints_bare_url(self, config, capsys):
        announcer = ConsoleAnnouncer(url_only=True)

        announcer.probing(config.target)
        announcer.running("https://abc.ngrok.app", config)
        announcer.status(TunnelStatus.CONNECTED)
        announcer.shutting_down()

        captured = capsys.readouterr()
        assert captured.out == "https://abc.ngrok.app\n"
        assert captured.err == ""

    def test_status_goes_to_stderr(self, capsys):
        ConsoleAnnouncer().status(TunnelStatus.RECONNECTING)

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "[ngrok] reconnecting" in captured.err

    def test_probing_announces_target(self, config, capsys):
        ConsoleAnnouncer().probing(config.target)

        assert "http://localhost:3000" in capsys.readouterr().out


def test_announcer_satisfies_orchestrator_protocol():
    announcer = ConsoleAnnouncer()
    for name in ("probing", "running", "shutting_down"):
        assert callable(getattr(announcer, name))

