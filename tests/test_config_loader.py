"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from mariactl.config import (
    AppConfig,
    ConfigError,
    build_desired_configuration,
    env_mariadb_keys,
    load_config,
    save_mariadb_settings,
)


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.mariadb.port == 3306
    assert config.mariadb.server_id == 1
    assert config.mariadb.data_dir == Path("/var/lib/mysql")
    assert config.mariadb.binlog_dir == Path("/var/lib/mysqlbinlogs")
    assert config.mariadb.innodb_buffer_pool_size == "128M"
    assert config.mariadb.innodb_buffer_pool_instances == 8
    assert config.templates.server_config == Path("/etc/mariactl/templates/server.cnf")
    assert config.backups.enabled is True
    assert config.validation.min_free_bytes == 1024**3
    assert config.systemd.service_candidates == ("mariadb", "mysql", "mysqld")


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "mariactl.yml"
    cfg.write_text(
        "logs_dir: {logs}\n"
        "mariadb:\n"
        "  port: 3307\n"
        "  data_dir: /data/mysql\n"
        "  innodb_encrypt_tables: true\n"
        "backups:\n"
        "  root: {backups}\n"
        "systemd:\n"
        "  service_candidates: mariadb,mysqld\n".format(
            logs=tmp_path / "logs", backups=tmp_path / "backups"
        )
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.logs_dir == tmp_path / "logs"
    assert config.mariadb.port == 3307
    assert config.mariadb.data_dir == Path("/data/mysql")
    assert config.mariadb.innodb_encrypt_tables is True
    assert config.backups.root == tmp_path / "backups"
    assert config.systemd.service_candidates == ("mariadb", "mysqld")


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "mariactl.yml"
    cfg.write_text("mariadb:\n  port: 3307\n")
    env = {
        "MARIACTL_CONFIG_FILE": str(cfg),
        "MARIACTL_MARIADB__PORT": "3308",
        "MARIACTL_MARIADB__INNODB_ENCRYPT_TABLES": "false",
        "MARIACTL_LOGS_DIR": str(tmp_path / "logs"),
        "MARIACTL_SYSTEMD__RESTART_BACKOFF": "0.5",
    }

    config = load_config(env=env)

    assert config.config_file == cfg
    assert config.mariadb.port == 3308
    assert config.mariadb.innodb_encrypt_tables is False
    assert config.logs_dir == tmp_path / "logs"
    assert config.systemd.restart_backoff == 0.5
    assert env_mariadb_keys(env) == {"port", "innodb_encrypt_tables"}


def test_overrides_win_over_environment(tmp_path: Path) -> None:
    """Programmatic overrides are applied last."""
    env = {"MARIACTL_MARIADB__PORT": "3308"}

    config = load_config(
        config_file=tmp_path / "missing.yml",
        env=env,
        overrides={"mariadb": {"port": 3309}},
    )

    assert config.mariadb.port == 3309


def test_unknown_keys_raise(tmp_path: Path) -> None:
    """Unknown keys are rejected with a helpful error."""
    cfg = tmp_path / "mariactl.yml"
    cfg.write_text("mariadb:\n  tablespace: big\n")

    with pytest.raises(ConfigError, match="Unknown mariadb configuration keys: tablespace"):
        load_config(config_file=cfg, env={})

    cfg.write_text("nginx: {}\n")
    with pytest.raises(ConfigError, match="Unknown configuration keys: nginx"):
        load_config(config_file=cfg, env={})

    cfg.write_text("state_dir: /var/lib/mariactl\n")
    with pytest.raises(ConfigError, match="Unknown configuration keys: state_dir"):
        load_config(config_file=cfg, env={})


@pytest.mark.parametrize(
    "body, message",
    [
        ("mariadb:\n  port: 70000\n", "mariadb.port must be between 1 and 65535"),
        ("mariadb:\n  server_id: 0\n", "mariadb.server_id must be a positive integer"),
        ("systemd:\n  restart_attempts: 0\n", "systemd.restart_attempts must be at least 1"),
    ],
)
def test_invalid_values_raise(tmp_path: Path, body: str, message: str) -> None:
    """Out-of-range values are reported."""
    cfg = tmp_path / "mariactl.yml"
    cfg.write_text(body)

    with pytest.raises(ConfigError, match=message):
        load_config(config_file=cfg, env={})


def test_non_mapping_file_raises(tmp_path: Path) -> None:
    """A YAML list at the top level is not a valid configuration."""
    cfg = tmp_path / "mariactl.yml"
    cfg.write_text("- port\n")

    with pytest.raises(ConfigError, match="must contain a mapping"):
        load_config(config_file=cfg, env={})


def test_build_desired_configuration_marks_flags_and_env_explicit(tmp_path: Path) -> None:
    """CLI flags and env-provided keys are tracked as explicit."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    desired = build_desired_configuration(
        config,
        flags={"port": "3307", "data_dir": "/data/mysql", "log_dir": None},
        env_keys={"innodb_buffer_pool_size"},
    )

    assert desired.port == 3307
    assert desired.data_dir == Path("/data/mysql")
    assert desired.log_dir == Path("/var/log/mysql")
    assert desired.explicit == {"port", "data_dir", "buffer_pool_size"}
    assert desired.is_explicit("port")
    assert not desired.is_explicit("log_dir")


def test_build_desired_configuration_rejects_unknown_flag(tmp_path: Path) -> None:
    """Unknown flag names are configuration errors."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    with pytest.raises(ConfigError, match="Unknown configuration flag: tablespace"):
        build_desired_configuration(config, flags={"tablespace": "big"})


def test_save_mariadb_settings_preserves_other_sections(tmp_path: Path) -> None:
    """Persisting settings merges into the mariadb section only."""
    cfg = tmp_path / "etc" / "mariactl.yml"
    cfg.parent.mkdir()
    cfg.write_text("logs_dir: /var/log/mariactl\nmariadb:\n  service_user: mysql\n")

    save_mariadb_settings(cfg, {"port": 3307, "data_dir": Path("/data/mysql")})

    data = yaml.safe_load(cfg.read_text())
    assert data["logs_dir"] == "/var/log/mariactl"
    assert data["mariadb"] == {
        "service_user": "mysql",
        "port": 3307,
        "data_dir": "/data/mysql",
    }
    assert cfg.stat().st_mode & 0o777 == 0o640
    assert [path.name for path in cfg.parent.iterdir()] == ["mariactl.yml"]

    reloaded = load_config(config_file=cfg, env={})
    assert reloaded.mariadb.port == 3307


def test_save_mariadb_settings_creates_missing_file(tmp_path: Path) -> None:
    """A missing config file (and directory) is created."""
    cfg = tmp_path / "new" / "config.yml"

    save_mariadb_settings(cfg, {"server_id": 2})

    assert yaml.safe_load(cfg.read_text()) == {"mariadb": {"server_id": 2}}


def test_save_mariadb_settings_rejects_unknown_keys(tmp_path: Path) -> None:
    """Only known mariadb keys may be persisted."""
    with pytest.raises(ConfigError, match="Unknown mariadb configuration keys: bogus"):
        save_mariadb_settings(tmp_path / "config.yml", {"bogus": 1})
