"""Unit tests for paperdb.engine.config — PaperDBConfig and loading."""

from pathlib import Path

import pytest

from paperdb.engine.config import (
    CONFIG_ENV_VAR,
    BlobStoreConfig,
    LoggingConfig,
    LogStoreConfig,
    PaperDBConfig,
    get_config,
    load_config,
)
from paperdb.engine.errors import PaperDBConfigError


class TestPaperDBConfig:
    """Test the PaperDBConfig Pydantic model."""

    def test_defaults(self):
        cfg = PaperDBConfig()
        assert cfg.name == "paperdb"
        assert cfg.directory == ".paperdb"
        assert cfg.identity.key_file == "keys/identity.pem"
        assert cfg.logstore.backend == "memory"
        assert cfg.blobstore.backend == "memory"
        assert cfg.access.fail_open is True
        assert cfg.logging.level == "INFO"
        assert cfg.logging.format == "json"

    def test_invalid_logstore_backend(self):
        with pytest.raises(ValueError, match="memory/sql"):
            LogStoreConfig(backend="redis")

    def test_invalid_blobstore_backend(self):
        with pytest.raises(ValueError, match="memory/gateway"):
            BlobStoreConfig(backend="s3")

    def test_invalid_logging_format(self):
        with pytest.raises(ValueError, match="json/text"):
            LoggingConfig(format="xml")

    def test_resolve_path(self, tmp_path):
        cfg = PaperDBConfig(directory=str(tmp_path))
        assert cfg.resolve_path("keys/a.pem") == tmp_path / "keys" / "a.pem"
        absolute = tmp_path / "elsewhere.pem"
        assert cfg.resolve_path(str(absolute)) == absolute

    def test_logstore_url_default_is_sqlite_in_directory(self):
        cfg = PaperDBConfig(directory="data")
        assert cfg.logstore_url() == f"sqlite:///{Path('data') / 'logstore.db'}"

    def test_logstore_url_explicit(self):
        cfg = PaperDBConfig(logstore=LogStoreConfig(backend="sql", url="sqlite://"))
        assert cfg.logstore_url() == "sqlite://"


class TestLoadConfig:

    def test_no_file_gives_defaults(self):
        cfg = load_config()
        assert cfg == PaperDBConfig()

    def test_explicit_path(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text(
            "name: notes\n"
            "logstore:\n"
            "  backend: sql\n"
            "access:\n"
            "  fail_open: false\n",
            encoding="utf-8",
        )
        cfg = load_config(str(path))
        assert cfg.name == "notes"
        assert cfg.logstore.backend == "sql"
        assert cfg.access.fail_open is False

    def test_nested_under_paperdb_key(self, tmp_path):
        path = tmp_path / "paperdb.yaml"
        path.write_text("paperdb:\n  name: nested\n", encoding="utf-8")
        assert load_config(str(path)).name == "nested"

    def test_discovered_from_cwd(self, tmp_path):
        (tmp_path / "paperdb.yaml").write_text("name: found\n", encoding="utf-8")
        assert load_config().name == "found"

    def test_env_var(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text("name: from-env\n", encoding="utf-8")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert load_config().name == "from-env"

    def test_invalid_value_raises_config_error(self, tmp_path):
        path = tmp_path / "paperdb.yaml"
        path.write_text("logstore:\n  backend: mongo\n", encoding="utf-8")
        with pytest.raises(PaperDBConfigError, match="Invalid configuration"):
            load_config(str(path))

    def test_invalid_yaml_raises_config_error(self, tmp_path):
        path = tmp_path / "paperdb.yaml"
        path.write_text("name: [unclosed\n", encoding="utf-8")
        with pytest.raises(PaperDBConfigError, match="Cannot parse"):
            load_config(str(path))

    def test_get_config_caches(self, tmp_path):
        (tmp_path / "paperdb.yaml").write_text("name: cached\n", encoding="utf-8")
        first = get_config()
        assert first.name == "cached"
        assert get_config() is first
