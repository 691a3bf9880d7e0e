"""Tests for ingestra.config."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from ingestra.config import IngestraConfig, default_config_dict, get_ingestra_home, load_config, resolve_factory
from ingestra.errors import ConfigError


def _write_config(path: Path, data: dict) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


class TestIngestraHome:
    def test_env_override(self, tmp_path):
        with patch.dict(os.environ, {"INGESTRA_HOME": str(tmp_path)}):
            assert get_ingestra_home() == tmp_path

    def test_default_home(self):
        env = {k: v for k, v in os.environ.items() if k != "INGESTRA_HOME"}
        with patch.dict(os.environ, env, clear=True):
            assert get_ingestra_home() == Path("~/.config/ingestra").expanduser()


class TestLoadConfig:
    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="ingestra init"):
            load_config(tmp_path / "config.yaml")

    def test_defaults_round_trip(self, tmp_path):
        path = _write_config(tmp_path / "config.yaml", default_config_dict(tmp_path))
        config = load_config(path)
        assert config.store_path == str(tmp_path / "ingestra.db")
        assert config.sql_backend == "sqlite"
        assert config.max_iterations == 3
        assert config.success_threshold == 0.95
        assert config.retry_threshold == 0.8

    def test_unknown_keys_go_to_extra(self, tmp_path):
        data = default_config_dict(tmp_path)
        data["team"] = "analytics"
        config = load_config(_write_config(tmp_path / "config.yaml", data))
        assert config.extra == {"team": "analytics"}

    def test_missing_required_key(self, tmp_path):
        data = default_config_dict(tmp_path)
        del data["warehouse_path"]
        with pytest.raises(ConfigError, match="warehouse_path"):
            load_config(_write_config(tmp_path / "config.yaml", data))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("store_path: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path)

    def test_env_file_supplies_fred_key(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("FRED_API_KEY=from-dotenv\n")
        data = default_config_dict(tmp_path)
        data["env_file"] = str(env_file)

        env = {k: v for k, v in os.environ.items() if k != "FRED_API_KEY"}
        with patch.dict(os.environ, env, clear=True):
            config = load_config(_write_config(tmp_path / "config.yaml", data))

        assert config.fred_api_key == "from-dotenv"

    def test_explicit_fred_key_wins(self, tmp_path):
        data = default_config_dict(tmp_path)
        data["fred_api_key"] = "from-config"
        with patch.dict(os.environ, {"FRED_API_KEY": "from-env"}):
            config = load_config(_write_config(tmp_path / "config.yaml", data))
        assert config.fred_api_key == "from-config"


class TestValidate:
    def _config(self, tmp_path, **overrides):
        return IngestraConfig(
            store_path=str(tmp_path / "a.db"),
            warehouse_path=str(tmp_path / "b.db"),
            index_path=str(tmp_path / "c.db"),
            **overrides,
        )

    def test_valid(self, tmp_path):
        self._config(tmp_path).validate()

    def test_bad_backend(self, tmp_path):
        with pytest.raises(ConfigError, match="sql_backend"):
            self._config(tmp_path, sql_backend="postgres").validate()

    def test_bigquery_needs_dataset(self, tmp_path):
        with pytest.raises(ConfigError, match="bigquery_project"):
            self._config(tmp_path, sql_backend="bigquery", bigquery_project="p").validate()

    def test_thresholds_ordered(self, tmp_path):
        with pytest.raises(ConfigError, match="thresholds"):
            self._config(tmp_path, success_threshold=0.5, retry_threshold=0.8).validate()

    def test_iterations_positive(self, tmp_path):
        with pytest.raises(ConfigError, match="max_iterations"):
            self._config(tmp_path, max_iterations=0).validate()

    def test_paths_expanded(self):
        config = IngestraConfig(store_path="~/x.db", warehouse_path="~/y.db", index_path="~/z.db")
        assert not config.store_path.startswith("~")

    @pytest.mark.parametrize("path", ["conftest.FakeEmbedder", ":FakeEmbedder", "conftest:", 42])
    def test_client_path_shape(self, tmp_path, path):
        with pytest.raises(ConfigError, match="embedding_client"):
            self._config(tmp_path, embedding_client=path).validate()


class TestResolveFactory:
    def test_resolves_callable(self):
        assert resolve_factory("pathlib:Path") is Path

    def test_missing_module(self):
        with pytest.raises(ConfigError, match="Cannot import"):
            resolve_factory("no_such_module_here:build")

    def test_missing_attribute(self):
        with pytest.raises(ConfigError, match="callable"):
            resolve_factory("pathlib:no_such_factory")

    def test_not_callable(self):
        with pytest.raises(ConfigError, match="callable"):
            resolve_factory("os:sep")
