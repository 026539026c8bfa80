import os
import pytest
import yaml
from pathlib import Path
from ondeploy.config import ConfigError, OnDeployConfig, get_ondeploy_home, load_config
from ondeploy.errors import ConfigurationError


def _write(path, data):
    path.write_text(yaml.dump(data))


def test_get_ondeploy_home_default(monkeypatch):
    monkeypatch.delenv("ONDEPLOY_HOME", raising=False)
    assert get_ondeploy_home() == Path("~/.config/ondeploy").expanduser()


def test_get_ondeploy_home_env_var(monkeypatch, tmp_path):
    custom_home = tmp_path / "custom_home"
    monkeypatch.setenv("ONDEPLOY_HOME", str(custom_home))
    assert get_ondeploy_home() == custom_home


def test_load_config_missing_file(monkeypatch, tmp_path):
    monkeypatch.setenv("ONDEPLOY_HOME", str(tmp_path))
    with pytest.raises(FileNotFoundError, match="ondeploy config.yaml not found"):
        load_config()


def test_load_config_valid(monkeypatch, tmp_path):
    monkeypatch.setenv("ONDEPLOY_HOME", str(tmp_path))
    _write(tmp_path / "config.yaml", {
        "database_path": str(tmp_path / "app.db"),
        "scripts": ["AddIndex", "MigrateUsers"],
        "script_modules": ["myapp.deploy_scripts"],
        "log_level": "debug",
    })

    cfg = load_config()
    assert isinstance(cfg, OnDeployConfig)
    assert cfg.database_path == tmp_path / "app.db"
    assert cfg.scripts == ["AddIndex", "MigrateUsers"]
    assert cfg.script_modules == ["myapp.deploy_scripts"]
    assert cfg.status_backend == "sqlite"
    assert cfg.status_table == "ondeploy_script_status"
    assert cfg.log_level == "DEBUG"
    assert cfg.log_format == "pretty"
    assert cfg.log_console is True


def test_load_config_explicit_path(tmp_path):
    config_path = tmp_path / "elsewhere.yaml"
    _write(config_path, {"database_path": "/srv/app.db"})

    cfg = load_config(config_path)
    assert cfg.database_path == Path("/srv/app.db")
    assert cfg.scripts == []


def test_load_config_expands_paths(monkeypatch, tmp_path):
    monkeypatch.setenv("ONDEPLOY_HOME", str(tmp_path))
    monkeypatch.setenv("APP_DATA", str(tmp_path / "data"))
    _write(tmp_path / "config.yaml", {
        "database_path": "$APP_DATA/app.db",
        "log_file": "~/ondeploy.log",
    })

    cfg = load_config()
    assert cfg.database_path == tmp_path / "data" / "app.db"
    assert cfg.log_file == Path("~/ondeploy.log").expanduser()


def test_load_config_with_env_file(monkeypatch, tmp_path):
    monkeypatch.setenv("ONDEPLOY_HOME", str(tmp_path))
    env_file = tmp_path / ".env.test"
    env_file.write_text("TEST_VAR=loaded_from_env")
    _write(tmp_path / "config.yaml", {"database_path": "app.db", "env_file": str(env_file)})

    # Pre-clean env var
    monkeypatch.delenv("TEST_VAR", raising=False)

    load_config()
    assert os.environ.get("TEST_VAR") == "loaded_from_env"
    monkeypatch.delenv("TEST_VAR", raising=False)


def test_load_config_missing_env_file_is_ignored(monkeypatch, tmp_path):
    monkeypatch.setenv("ONDEPLOY_HOME", str(tmp_path))
    _write(tmp_path / "config.yaml", {"database_path": "app.db", "env_file": str(tmp_path / "nope.env")})

    cfg = load_config()
    assert cfg.env_file == tmp_path / "nope.env"


def test_load_config_file_backend_defaults_root_to_home(monkeypatch, tmp_path):
    monkeypatch.setenv("ONDEPLOY_HOME", str(tmp_path))
    _write(tmp_path / "config.yaml", {"database_path": "app.db", "status_backend": "file"})

    cfg = load_config()
    assert cfg.status_root == tmp_path / "status"


def test_load_config_missing_database_path(monkeypatch, tmp_path):
    monkeypatch.setenv("ONDEPLOY_HOME", str(tmp_path))
    _write(tmp_path / "config.yaml", {"scripts": ["AddIndex"]})

    with pytest.raises(ConfigError, match="database_path"):
        load_config()


def test_load_config_invalid_yaml(monkeypatch, tmp_path):
    monkeypatch.setenv("ONDEPLOY_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("scripts: [unclosed")

    with pytest.raises(ConfigError, match="Invalid YAML syntax"):
        load_config()


def test_load_config_empty_file(monkeypatch, tmp_path):
    monkeypatch.setenv("ONDEPLOY_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("")

    with pytest.raises(ConfigError, match="empty"):
        load_config()


def test_load_config_not_a_mapping(monkeypatch, tmp_path):
    monkeypatch.setenv("ONDEPLOY_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("- just\n- a list\n")

    with pytest.raises(ConfigError, match="mapping"):
        load_config()


@pytest.mark.parametrize("data, match", [
    ({"status_backend": "redis"}, "status_backend"),
    ({"status_backend": "memory"}, "status_backend"),
    ({"log_format": "xml"}, "log_format"),
    ({"scripts": "AddIndex"}, "scripts"),
    ({"script_modules": [1, 2]}, "script_modules"),
])
def test_from_dict_rejects_invalid_values(tmp_path, data, match):
    with pytest.raises(ConfigError, match=match):
        OnDeployConfig.from_dict({"database_path": "app.db", **data}, home=tmp_path)


def test_config_error_is_configuration_error():
    assert issubclass(ConfigError, ConfigurationError)


def test_validate_file_backend_requires_root():
    cfg = OnDeployConfig(database_path=Path("app.db"), status_backend="file")
    with pytest.raises(ConfigError, match="status_root"):
        cfg.validate()
