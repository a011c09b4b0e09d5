"""CLI integration tests running against a temporary state tree."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner, Result

from tenantctl import __version__
from tenantctl.cli import app, exit_code_for
from tenantctl.config import ConfigError
from tenantctl.errors import InstanceNotAvailableError, SubdomainAlreadyExistsError
from tenantctl.exit_codes import ExitCode
from tenantctl.locking import LockTimeoutError
from tenantctl.providers.compute import ComputeProviderError

runner = CliRunner()

SYSTEMCTL_STUB = """\
#!/bin/sh
echo "$@" >> "{log}"
if [ "$1" = "is-active" ]; then
    echo active
fi
exit 0
"""


def _prepare_environment(tmp_path: Path) -> tuple[dict[str, str], Path]:
    """Write a config file and a systemctl stub; return env and the stub log path."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    log_path = tmp_path / "systemctl.log"
    stub = bin_dir / "systemctl"
    stub.write_text(SYSTEMCTL_STUB.format(log=log_path), encoding="utf-8")
    stub.chmod(0o755)

    config_path = tmp_path / "etc" / "config.yml"
    config_path.parent.mkdir(parents=True)
    config_path.write_text(
        yaml.safe_dump(
            {
                "state_dir": str(tmp_path / "state"),
                "logs_dir": str(tmp_path / "logs"),
                "runtime_dir": str(tmp_path / "run"),
                "instance_root": str(tmp_path / "instances"),
                "endpoint": "https://manage.example.org",
                "domain": "example.org",
                "versions": ["1.0", "1.1"],
                "polling": {"deadline_seconds": 5, "interval_seconds": 0.05},
                "notifications": {"admin_addresses": ["ops@example.org"]},
                "systemd": {"systemctl_bin": str(stub)},
            }
        ),
        encoding="utf-8",
    )
    env = {
        "TENANTCTL_CONFIG_FILE": str(config_path),
        "TENANTCTL_USER": "olivia",
        "TENANTCTL_EMAIL": "olivia@example.org",
    }
    return env, log_path


def _invoke(env: dict[str, str], *args: str) -> Result:
    return runner.invoke(app, list(args), env=env)


@pytest.fixture()
def cli_env(tmp_path: Path) -> dict[str, str]:
    env, _ = _prepare_environment(tmp_path)
    return env


def test_version_flag() -> None:
    """--version prints the package version without loading config."""
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_config_show_json(cli_env: dict[str, str], tmp_path: Path) -> None:
    """config show reports the merged configuration."""
    result = _invoke(cli_env, "config", "show", "--json")

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["registry_dir"] == str(tmp_path / "state" / "registry")
    assert payload["versions"] == ["1.0", "1.1"]
    assert payload["notifications"]["admin_addresses"] == ["ops@example.org"]


def test_account_create_list_show(cli_env: dict[str, str]) -> None:
    """Accounts created through the CLI show up in list and show."""
    created = _invoke(
        cli_env,
        "account",
        "create",
        "acme",
        "--name",
        "Acme Corp",
        "--secondary-storage",
        "MICROSOFT_AZURE",
    )
    assert created.exit_code == 0, created.output
    assert "Created account 0 (acme) with status PENDING" in created.stdout

    listed = _invoke(cli_env, "account", "list", "--json")
    assert listed.exit_code == 0, listed.output
    accounts = json.loads(listed.stdout)["accounts"]
    assert [(item["id"], item["subdomain"], item["status"]) for item in accounts] == [
        (0, "acme", "PENDING")
    ]

    shown = _invoke(cli_env, "account", "show", "0", "--json")
    assert shown.exit_code == 0, shown.output
    assert json.loads(shown.stdout)["secondary_binding_ids"] == [1]

    users = _invoke(cli_env, "account", "users", "0", "--json")
    assert json.loads(users.stdout)["users"][0]["roles"] == ["ADMIN", "OWNER", "USER"]


def test_duplicate_subdomain_exit_code(cli_env: dict[str, str]) -> None:
    """Validation failures exit with code 2."""
    assert _invoke(cli_env, "account", "create", "acme", "--name", "Acme").exit_code == 0

    result = _invoke(cli_env, "account", "create", "acme", "--name", "Acme again")

    assert result.exit_code == int(ExitCode.VALIDATION)
    assert "already in use" in result.output


def test_unknown_account_exit_code(cli_env: dict[str, str]) -> None:
    """Unknown accounts are reported as validation errors."""
    result = _invoke(cli_env, "account", "show", "7")

    assert result.exit_code == int(ExitCode.VALIDATION)


def test_status_transition_conflict_exit_code(cli_env: dict[str, str]) -> None:
    """Illegal transitions exit with the conflict code."""
    _invoke(cli_env, "account", "create", "acme", "--name", "Acme")

    result = _invoke(cli_env, "account", "deactivate", "0")

    assert result.exit_code == int(ExitCode.CONFLICT)
    assert _invoke(cli_env, "account", "activate", "0").exit_code == 0


def test_instance_lifecycle(tmp_path: Path) -> None:
    """Create, observe, wait on and stop an instance through the systemd backend."""
    env, log_path = _prepare_environment(tmp_path)
    _invoke(env, "account", "create", "acme", "--name", "Acme")
    _invoke(env, "account", "activate", "0")

    created = _invoke(env, "instance", "create", "0")
    assert created.exit_code == 0, created.output
    assert "version 1.1" in created.stdout
    assert "is CREATING" in created.stdout
    assert (tmp_path / "run" / "systemd" / "tenantctl-acme.service").exists()

    status = _invoke(env, "instance", "status", "0", "--json")
    assert status.exit_code == 0, status.output
    payload = json.loads(status.stdout)
    assert payload["status"] == "READY"
    assert payload["instance"]["state"] == "RUNNING"
    config = json.loads((tmp_path / "instances" / "tenantctl-acme" / "config.json").read_text())
    assert config["users"] == {"olivia": ["ADMIN", "OWNER", "USER"]}
    assert config["admin"]["host"] == "acme.example.org"

    waited = _invoke(env, "instance", "wait", "0", "--json")
    assert waited.exit_code == 0, waited.output
    assert json.loads(waited.stdout)["status"] == "READY"

    duplicate = _invoke(env, "instance", "create", "0")
    assert duplicate.exit_code == int(ExitCode.CONFLICT)

    stopped = _invoke(env, "instance", "stop", "0")
    assert stopped.exit_code == 0, stopped.output
    assert not (tmp_path / "run" / "systemd" / "tenantctl-acme.service").exists()
    calls = log_path.read_text(encoding="utf-8").splitlines()
    assert "start --no-block tenantctl-acme.service" in calls
    assert "stop --no-block tenantctl-acme.service" in calls


def test_instance_wait_without_instance_times_out(cli_env: dict[str, str]) -> None:
    """Waiting on an account without an instance ends with the provider exit code."""
    _invoke(cli_env, "account", "create", "acme", "--name", "Acme")

    result = _invoke(cli_env, "instance", "wait", "0", "--deadline", "0.1", "--interval", "0.05")

    assert result.exit_code == int(ExitCode.PROVIDER)
    assert "TIMEOUT" in result.stdout


def test_instance_versions(cli_env: dict[str, str]) -> None:
    """versions lists the catalog and the latest entry."""
    result = _invoke(cli_env, "instance", "versions", "--json")

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == {"versions": ["1.0", "1.1"], "latest": "1.1"}


def test_invitation_send_list_redeem(cli_env: dict[str, str]) -> None:
    """Invitations can be sent, listed and redeemed."""
    _invoke(cli_env, "account", "create", "acme", "--name", "Acme")

    sent = _invoke(cli_env, "invitation", "send", "0", "bob@example.org", "--days", "3")
    assert sent.exit_code == 0, sent.output
    assert "sent to bob@example.org" in sent.stdout

    listed = _invoke(cli_env, "invitation", "list", "0", "--json")
    invitations = json.loads(listed.stdout)["invitations"]
    assert [item["user_email"] for item in invitations] == ["bob@example.org"]

    redeemer = {**cli_env, "TENANTCTL_USER": "bob"}
    redeemed = _invoke(redeemer, "invitation", "redeem", invitations[0]["redemption_code"])
    assert redeemed.exit_code == 0, redeemed.output
    assert "bob joined account 0 (USER)" in redeemed.stdout

    missing = _invoke(cli_env, "invitation", "delete", str(invitations[0]["id"]))
    assert missing.exit_code == int(ExitCode.VALIDATION)


def test_binding_commands(cli_env: dict[str, str]) -> None:
    """Bindings can be added, promoted and removed."""
    _invoke(cli_env, "account", "create", "acme", "--name", "Acme")

    added = _invoke(cli_env, "binding", "add", "0", "EMC")
    assert added.exit_code == 0, added.output

    promoted = _invoke(cli_env, "binding", "set-primary", "0", "1")
    assert promoted.exit_code == 0, promoted.output
    primary = json.loads(_invoke(cli_env, "binding", "primary", "0", "--json").stdout)
    assert primary["type"] == "EMC"
    assert primary["password"] == "********"

    assert _invoke(cli_env, "binding", "remove", "0", "0").exit_code == 0
    again = _invoke(cli_env, "binding", "remove", "0", "0")
    assert again.exit_code == int(ExitCode.VALIDATION)
    secondaries = json.loads(_invoke(cli_env, "binding", "secondaries", "0", "--json").stdout)
    assert secondaries == {"bindings": []}


def test_invalid_config_exit_code(tmp_path: Path) -> None:
    """Broken configuration exits with the environment code."""
    config_path = tmp_path / "config.yml"
    config_path.write_text("unexpected: true\n", encoding="utf-8")

    result = runner.invoke(app, ["--config-file", str(config_path), "config", "show"])

    assert result.exit_code == int(ExitCode.ENVIRONMENT)


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (SubdomainAlreadyExistsError("acme"), ExitCode.VALIDATION),
        (InstanceNotAvailableError("busy"), ExitCode.CONFLICT),
        (ConfigError("bad"), ExitCode.ENVIRONMENT),
        (LockTimeoutError("slow"), ExitCode.ENVIRONMENT),
        (ComputeProviderError("down"), ExitCode.PROVIDER),
    ],
)
def test_exit_code_mapping(error: Exception, expected: ExitCode) -> None:
    """Errors map onto stable exit codes."""
    assert exit_code_for(error) is expected


def test_principal_defaults_to_login_name(cli_env: dict[str, str], monkeypatch: pytest.MonkeyPatch) -> None:
    """Without --user the login name owns new accounts."""
    monkeypatch.setattr("getpass.getuser", lambda: "login-user")
    env = {key: value for key, value in cli_env.items() if key != "TENANTCTL_USER"}
    monkeypatch.delenv("TENANTCTL_USER", raising=False)

    _invoke(env, "account", "create", "acme", "--name", "Acme")
    users = json.loads(_invoke(env, "account", "users", "0", "--json").stdout)["users"]

    assert [item["username"] for item in users] == ["login-user"]


def test_version_add_show_remove(cli_env: dict[str, str]) -> None:
    """Versions can be registered, inspected and removed from the catalog."""
    added = _invoke(cli_env, "version", "add", "1.2", "--image", "tenant:1.2", "--notes", "spring")
    assert added.exit_code == 0, added.output
    assert "Registered version 1.2." in added.stdout

    shown = json.loads(_invoke(cli_env, "version", "show", "1.2", "--json").stdout)
    assert shown["image"] == "tenant:1.2"
    assert shown["source"] == "registry"
    listed = json.loads(_invoke(cli_env, "instance", "versions", "--json").stdout)
    assert listed == {"versions": ["1.0", "1.1", "1.2"], "latest": "1.2"}

    assert _invoke(cli_env, "version", "remove", "1.2").exit_code == 0
    assert _invoke(cli_env, "version", "remove", "1.2").exit_code == int(ExitCode.VALIDATION)
    assert _invoke(cli_env, "version", "remove", "1.0").exit_code == int(ExitCode.VALIDATION)


def test_binding_credentials_command(cli_env: dict[str, str]) -> None:
    """Binding credentials are stored and shown masked."""
    _invoke(cli_env, "account", "create", "acme", "--name", "Acme")

    result = _invoke(
        cli_env,
        "binding",
        "credentials",
        "0",
        "0",
        "--username",
        "AKIA",
        "--password",
        "s3cret",
        "--no-rrs",
    )
    assert result.exit_code == 0, result.output
    assert "storage class standard" in result.stdout

    primary = json.loads(_invoke(cli_env, "binding", "primary", "0", "--json").stdout)
    assert primary["username"] == "AKIA"
    assert primary["password"] == "********"
    assert primary["storage_class"] == "standard"

    unknown = _invoke(cli_env, "binding", "credentials", "0", "9", "--username", "x", "--password", "y")
    assert unknown.exit_code == int(ExitCode.VALIDATION)
