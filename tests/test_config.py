"""
Tests for settings resolution and .env overrides.
"""

import pytest

from pgbox.config import PostgresConfig, parse_extension_list, validate_postgres_version
from pgbox.env import get_database_password, get_postgres_version


@pytest.fixture
def env_file(tmp_path):
    """Path to a .env file inside a temporary directory."""
    return tmp_path / ".env"


class TestPostgresConfig:
    """Test PostgresConfig defaults and precedence."""

    def test_defaults_without_env_file(self, tmp_path):
        """Test built-in defaults when no .env exists."""
        config = PostgresConfig.resolve(env_file=str(tmp_path / "missing.env"))

        assert config.version == "18"
        assert config.port == "5432"
        assert config.user == "postgres"
        assert config.password == "postgres"
        assert config.database == "postgres"
        assert config.image() == "postgres:18"

    def test_env_file_overrides_defaults(self, env_file):
        """Test that .env values replace defaults."""
        env_file.write_text(
            "PGBOX_VERSION=16\nPGBOX_PORT=6543\nPGBOX_USER=app\nPGBOX_DATABASE=appdb\n"
        )

        config = PostgresConfig.resolve(env_file=str(env_file))

        assert config.version == "16"
        assert config.port == "6543"
        assert config.user == "app"
        assert config.database == "appdb"

    def test_explicit_values_override_env_file(self, env_file):
        """Test that command line values win."""
        env_file.write_text("PGBOX_VERSION=16\nPGBOX_PASSWORD=fromenv\n")

        config = PostgresConfig.resolve(
            version="17", password="explicit", env_file=str(env_file)
        )

        assert config.version == "17"
        assert config.password == "explicit"

    def test_explicit_empty_password_kept(self, env_file):
        """Test that an empty password is a deliberate choice."""
        env_file.write_text("PGBOX_PASSWORD=fromenv\n")

        config = PostgresConfig.resolve(password="", env_file=str(env_file))

        assert config.password == ""

    def test_unsupported_version_rejected(self, tmp_path):
        """Test version validation during resolution."""
        with pytest.raises(ValueError, match="invalid PostgreSQL version: 12"):
            PostgresConfig.resolve(version="12", env_file=str(tmp_path / "none"))

    def test_custom_image(self):
        """Test that a custom image replaces the stock one."""
        config = PostgresConfig(version="17", custom_image="pgbox-pg17-custom:abc")
        assert config.image() == "pgbox-pg17-custom:abc"


class TestEnvHelpers:
    """Test .env readers."""

    def test_blank_values_ignored(self, env_file):
        """Test that empty entries count as unset."""
        env_file.write_text("PGBOX_VERSION=\nPGBOX_PASSWORD=   \n")

        assert get_postgres_version(str(env_file)) is None
        assert get_database_password(str(env_file)) is None


class TestParsing:
    """Test argument parsing helpers."""

    def test_parse_extension_list(self):
        """Test comma splitting and trimming."""
        assert parse_extension_list(" pgvector, ,hypopg ,") == ["pgvector", "hypopg"]
        assert parse_extension_list("") == []
        assert parse_extension_list(None) == []

    @pytest.mark.parametrize("version", ["16", "17", "18"])
    def test_supported_versions(self, version):
        """Test that supported versions pass."""
        validate_postgres_version(version)
