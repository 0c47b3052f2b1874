"""
Tests for artifact models.
"""

import pytest

from pgbox.models import (
    ComposeModel,
    DockerfileModel,
    GucConflictError,
    InitModel,
    PGConfModel,
    sql_hash,
)


class TestDockerfileModel:
    """Test image build model mutators."""

    def test_add_packages_dedups_and_sorts(self):
        """Test that packages are unique and sorted."""
        model = DockerfileModel(base_image="postgres:17")
        model.add_packages(["b", "a"])
        model.add_packages(["a", "c"])

        assert model.apt_packages == ["a", "b", "c"]

    def test_url_kinds_kept_separate(self):
        """Test that deb and zip URLs live in separate lists."""
        model = DockerfileModel(base_image="postgres:17")
        model.add_deb_urls(["https://x/a.deb", "https://x/a.deb"])
        model.add_zip_urls(["https://x/b.zip"])

        assert model.deb_urls == ["https://x/a.deb"]
        assert model.zip_urls == ["https://x/b.zip"]
        assert model.has_install_steps()

    def test_empty_model_has_no_install_steps(self):
        """Test a model without packages or URLs."""
        assert not DockerfileModel(base_image="postgres:17").has_install_steps()


class TestComposeModel:
    """Test compose model mutators."""

    def test_ports_and_volumes_dedup_and_sort(self):
        """Test idempotent, sorted ports and volumes."""
        model = ComposeModel(service_name="db")
        model.add_port("5433:5432")
        model.add_port("5432:5432")
        model.add_port("5433:5432")
        model.add_volume("z:/z")
        model.add_volume("a:/a")

        assert model.ports == ["5432:5432", "5433:5432"]
        assert model.volumes == ["a:/a", "z:/z"]

    def test_set_env_last_write_wins(self):
        """Test environment overrides."""
        model = ComposeModel(service_name="db")
        model.set_env("POSTGRES_USER", "a")
        model.set_env("POSTGRES_USER", "b")

        assert model.env == {"POSTGRES_USER": "b"}


class TestPGConfModel:
    """Test server configuration model."""

    def test_shared_preload_sets_restart_flag(self):
        """Test that preload libraries require a restart."""
        model = PGConfModel()
        assert not model.require_restart

        model.add_shared_preload("pg_cron", "auto_explain")
        model.add_shared_preload("pg_cron")

        assert model.shared_preload == ["auto_explain", "pg_cron"]
        assert model.shared_preload_string() == "auto_explain,pg_cron"
        assert model.require_restart

    def test_set_guc_same_value_is_noop(self):
        """Test that reasserting a value succeeds."""
        model = PGConfModel()
        model.set_guc("wal_level", "logical")
        model.set_guc("wal_level", "logical")

        assert model.gucs == {"wal_level": "logical"}

    def test_set_guc_different_value_conflicts(self):
        """Test that a different value is rejected and the original kept."""
        model = PGConfModel()
        model.set_guc("wal_level", "logical")

        with pytest.raises(GucConflictError, match="wal_level"):
            model.set_guc("wal_level", "replica")
        assert model.gucs["wal_level"] == "logical"

    def test_is_empty(self):
        """Test emptiness checks."""
        model = PGConfModel()
        assert model.is_empty()
        model.set_guc("a", "1")
        assert not model.is_empty()


class TestInitModel:
    """Test init SQL model."""

    def test_fragment_dedup_by_content(self):
        """Test that identical content under different names is stored once."""
        model = InitModel()
        model.add_fragment("extA", "CREATE EXTENSION IF NOT EXISTS foo;")
        model.add_fragment("extB", "CREATE EXTENSION IF NOT EXISTS foo;")

        assert len(model.fragments) == 1
        assert model.fragments[0].name == "extA"

    def test_fragment_dedup_ignores_surrounding_whitespace(self):
        """Test that content is trimmed before hashing."""
        model = InitModel()
        model.add_fragment("a", "  SELECT 1;\n")
        model.add_fragment("b", "SELECT 1;")

        assert len(model.fragments) == 1
        assert model.fragments[0].content == "SELECT 1;"
        assert model.fragments[0].sha256 == sql_hash("SELECT 1;")

    def test_ordered_fragments_sorted_by_name(self):
        """Test that output order does not depend on insertion order."""
        model = InitModel()
        model.add_fragment("zeta", "SELECT 2;")
        model.add_fragment("alpha", "SELECT 1;")

        assert [f.name for f in model.ordered_fragments()] == ["alpha", "zeta"]
