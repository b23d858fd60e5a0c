"""Tests for CLI commands and helper functions."""

import json

import pytest
from click.testing import CliRunner

from async_mail_validation.cli import main, print_error, print_success, run_async

from fakes import DummyTransport


@pytest.fixture(autouse=True)
def quiet_env(monkeypatch, tmp_path):
    monkeypatch.setenv("GMV_LOG_LEVEL", "CRITICAL")
    for key in ("GMV_CONFIG", "GMV_TEST_RECIPIENT", "GMV_SMTP_HOST", "GMV_SMTP_PROVIDER", "GMV_TRACKING_ENDPOINT"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.ini"
    path.write_text("""
[validation]
test_recipient = qa@example.com
retry_attempts = 1

[smtp.primary]
host = smtp.example.com
user = mailer@example.com
password = secret
""")
    return path


@pytest.fixture
def templates_file(tmp_path):
    path = tmp_path / "templates.json"
    path.write_text(json.dumps([{
        "id": "welcome-v1",
        "type": "welcome",
        "subject": "Welcome {{userName}}",
        "html_body": "<p>Hello {{userName}}, activate at {{activationLink}}</p>",
        "text_body": "Hello {{userName}}",
        "declared_placeholders": ["userName", "activationLink"],
    }]))
    return path


def use_transport(monkeypatch, transport):
    monkeypatch.setattr("async_mail_validation.cli.AiosmtplibTransport", lambda **kwargs: transport)


# --- Helper function tests ---

class TestHelperFunctions:
    """Tests for CLI helper functions."""

    def test_run_async(self):
        """Test run_async executes coroutine synchronously."""
        async def async_func():
            return 42

        assert run_async(async_func()) == 42

    def test_print_helpers(self, capsys):
        """Test print_error goes to stderr and print_success to stdout."""
        print_error("boom")
        print_success("done")
        captured = capsys.readouterr()
        assert "boom" in captured.err
        assert "done" in captured.out


# --- Commands ---

class TestProvidersCommand:
    """Tests for the providers command."""

    def test_providers_json(self, runner):
        """Test provider defaults are exported as JSON."""
        result = runner.invoke(main, ["providers", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["gmail"]["host"] == "smtp.gmail.com"
        assert data["sendgrid"]["user"] == "apikey"
        assert set(data) == {"gmail", "outlook", "sendgrid", "mailgun", "ses", "custom"}

    def test_providers_table(self, runner):
        """Test the table lists every provider."""
        result = runner.invoke(main, ["providers"])

        assert result.exit_code == 0
        assert "gmail" in result.stdout
        assert "mailgun" in result.stdout


class TestCheckTemplateCommand:
    """Tests for the check-template command."""

    def test_valid_templates_exit_zero(self, runner, templates_file):
        """Test a clean templates file passes."""
        result = runner.invoke(main, ["check-template", str(templates_file), "--json"])

        assert result.exit_code == 0
        outcomes = json.loads(result.stdout)
        assert [o["status"] for o in outcomes] == ["passed", "passed", "passed"]

    def test_undeclared_placeholder_exit_one(self, runner, tmp_path):
        """Test a placeholder contract violation fails the command."""
        path = tmp_path / "bad.json"
        path.write_text(json.dumps([{
            "id": "t", "type": "welcome", "subject": "Hi {{name}}", "declared_placeholders": [],
        }]))

        result = runner.invoke(main, ["check-template", str(path)])

        assert result.exit_code == 1

    def test_invalid_file_exit_two(self, runner, tmp_path):
        """Test a malformed templates file is a configuration error."""
        path = tmp_path / "broken.json"
        path.write_text("{nope")

        result = runner.invoke(main, ["check-template", str(path)])

        assert result.exit_code == 2


class TestRunCommand:
    """Tests for the run command."""

    def test_run_passes(self, runner, monkeypatch, config_file, templates_file):
        """Test a healthy stack exits zero with a passed report."""
        use_transport(monkeypatch, DummyTransport())

        result = runner.invoke(main, [
            "run", "--config", str(config_file), "--templates", str(templates_file), "--json",
        ])

        assert result.exit_code == 0, result.output
        report = json.loads(result.stdout)
        assert report["status"] == "passed"
        assert report["summary"]["failed_tests"] == 0

    def test_run_fails_on_unreachable_server(self, runner, monkeypatch, config_file, templates_file):
        """Test a critical SMTP failure exits one."""
        use_transport(monkeypatch, DummyTransport(connect_error=ConnectionRefusedError("refused")))

        result = runner.invoke(main, [
            "run", "--config", str(config_file), "--templates", str(templates_file), "--json", "--strict",
        ])

        assert result.exit_code == 1
        report = json.loads(result.stdout)
        assert report["status"] == "failed"
        assert report["issues"][0]["code"] == "SMTP_CONNECTION_FAILED"

    def test_run_selected_phase_and_metrics(self, runner, monkeypatch, config_file, tmp_path):
        """Test --phase limits the run and --metrics writes the exposition file."""
        transport = DummyTransport()
        use_transport(monkeypatch, transport)
        metrics_path = tmp_path / "metrics.prom"

        result = runner.invoke(main, [
            "run", "--config", str(config_file), "--phase", "smtp_validation",
            "--metrics", str(metrics_path),
        ])

        assert result.exit_code == 0, result.output
        assert len(transport.connections) == 1
        assert b"gmv_last_run_passed 1.0" in metrics_path.read_bytes()

    def test_run_without_recipient_exit_two(self, runner, tmp_path):
        """Test a missing test recipient is reported as a configuration error."""
        path = tmp_path / "empty.ini"
        path.write_text("[validation]\n")

        result = runner.invoke(main, ["run", "--config", str(path)])

        assert result.exit_code == 2

    def test_recipient_option_overrides_config(self, runner, monkeypatch, config_file):
        """Test --recipient replaces the configured test recipient."""
        transport = DummyTransport()
        use_transport(monkeypatch, transport)

        result = runner.invoke(main, [
            "run", "--config", str(config_file), "--phase", "smtp_validation",
            "--recipient", "ops@example.com",
        ])

        assert result.exit_code == 0, result.output
        assert transport.sent[0].to == "ops@example.com"
