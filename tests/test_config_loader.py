"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from tenantctl.config import AppConfig, ConfigError, load_config


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.registry_dir == Path("/var/lib/tenantctl/registry")
    assert config.endpoint == "https://manage.localhost"
    assert config.polling.deadline_seconds == 300.0
    assert config.polling.interval_seconds == 10.0
    assert config.invitations.expiration_days == 14
    assert config.storage.port == 443
    assert config.storage.context == "durastore"
    assert config.notifications.smtp_host is None
    assert config.notifications.admin_addresses == ()


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "tenantctl.yml"
    cfg.write_text(
        "endpoint: https://manage.example.org/\n"
        "default_version: '1.1'\n"
        "versions: ['1.0', '1.1']\n"
        "polling:\n"
        "  interval_seconds: 2\n"
        "notifications:\n"
        "  smtp_host: mail.example.org\n"
        "  admin_addresses:\n"
        "    - ops@example.org\n"
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.endpoint == "https://manage.example.org"
    assert config.default_version == "1.1"
    assert config.versions == ("1.0", "1.1")
    assert config.polling.interval_seconds == 2.0
    assert config.notifications.smtp_host == "mail.example.org"
    assert config.notifications.admin_addresses == ("ops@example.org",)


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "tenantctl.yml"
    cfg.write_text("lock_timeout: 10\ninvitations:\n  expiration_days: 3\n")
    state_dir = tmp_path / "state"
    env = {
        "TENANTCTL_CONFIG_FILE": str(cfg),
        "TENANTCTL_STATE_DIR": str(state_dir),
        "TENANTCTL_LOCK_TIMEOUT": "45",
        "TENANTCTL_INVITATIONS__EXPIRATION_DAYS": "30",
        "TENANTCTL_NOTIFICATIONS__ADMIN_ADDRESSES": "[ops@example.org, billing@example.org]",
        "TENANTCTL_STORAGE__DEFAULT_RRS": "false",
        "TENANTCTL_USER": "olivia",
    }

    config = load_config(env=env)

    assert config.config_file == cfg
    assert config.state_dir == state_dir
    assert config.registry_dir == state_dir / "registry"
    assert config.lock_timeout == 45.0
    assert config.invitations.expiration_days == 30
    assert config.notifications.admin_addresses == ("ops@example.org", "billing@example.org")
    assert config.storage.default_rrs is False


def test_overrides_win_over_environment(tmp_path: Path) -> None:
    """Programmatic overrides are applied last."""
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={"TENANTCTL_LOCK_TIMEOUT": "45"},
        overrides={"lock_timeout": 5},
    )

    assert config.lock_timeout == 5.0


def test_unknown_top_level_key_rejected(tmp_path: Path) -> None:
    """Unknown keys raise a ConfigError."""
    cfg = tmp_path / "tenantctl.yml"
    cfg.write_text("unexpected: true\n")

    with pytest.raises(ConfigError, match="unexpected"):
        load_config(config_file=cfg, env={})


def test_unknown_section_key_rejected(tmp_path: Path) -> None:
    """Unknown keys inside a section are reported with the section name."""
    with pytest.raises(ConfigError, match="polling"):
        load_config(
            config_file=tmp_path / "missing.yml",
            env={"TENANTCTL_POLLING__JITTER": "1"},
        )


@pytest.mark.parametrize(
    ("env", "message"),
    [
        ({"TENANTCTL_ENDPOINT": "ftp://manage"}, "endpoint"),
        ({"TENANTCTL_POLLING__INTERVAL_SECONDS": "0"}, "interval_seconds"),
        ({"TENANTCTL_INVITATIONS__EXPIRATION_DAYS": "0"}, "expiration_days"),
        ({"TENANTCTL_LOCK_TIMEOUT": "soon"}, "lock_timeout"),
    ],
)
def test_invalid_values_rejected(tmp_path: Path, env: dict[str, str], message: str) -> None:
    """Malformed values are reported as configuration errors."""
    with pytest.raises(ConfigError, match=message):
        load_config(config_file=tmp_path / "missing.yml", env=env)


def test_to_dict_masks_secrets(tmp_path: Path) -> None:
    """Passwords never appear in the serialised configuration."""
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={
            "TENANTCTL_NOTIFICATIONS__PASSWORD": "hunter2",
            "TENANTCTL_AUDIT__PASSWORD": "s3cret",
        },
    )

    data = config.to_dict()

    assert data["notifications"]["password"] == "********"
    assert data["audit"]["password"] == "********"
    assert config.notifications.password == "hunter2"
