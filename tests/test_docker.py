"""
Tests for Docker operations.
"""

import subprocess
from unittest.mock import MagicMock, patch

import docker.errors
import pytest

from pgbox.config import PostgresConfig
from pgbox.docker import (
    ContainerOptions,
    DockerCommandError,
    DockerManager,
    build_postgres_args,
    select_pgbox_container,
)


def _container(name, status="running", image="postgres:17", env=None, ports=None):
    container = MagicMock()
    container.name = name
    container.status = status
    container.attrs = {"Config": {"Image": image, "Env": env or []}}
    container.ports = ports or {}
    return container


class TestBuildPostgresArgs:
    """Test docker run argument construction."""

    def test_basic_arguments(self):
        """Test name, port, environment and image."""
        config = PostgresConfig(version="17", port="5433", database="app", user="me")
        args = build_postgres_args(config, ContainerOptions(name="pgbox-pg17"))

        assert args[:5] == ["run", "--name", "pgbox-pg17", "-p", "5433:5432"]
        assert "POSTGRES_DB=app" in args
        assert "POSTGRES_USER=me" in args
        assert "POSTGRES_PASSWORD=postgres" in args
        assert args[-1] == "postgres:17"

    def test_empty_password_uses_trust(self):
        """Test trust authentication without a password."""
        config = PostgresConfig(password="")
        args = build_postgres_args(config, ContainerOptions(name="x"))

        assert "POSTGRES_HOST_AUTH_METHOD=trust" in args
        assert not any(arg.startswith("POSTGRES_PASSWORD") for arg in args)

    def test_extras_and_command_order(self):
        """Test that extra flags precede the image and command follows it."""
        config = PostgresConfig(version="17", custom_image="pgbox-pg17-custom:abc")
        opts = ContainerOptions(
            name="x",
            extra_env=["TZ=UTC"],
            extra_args=["-d", "-v", "x-data:/var/lib/postgresql/data"],
            command=["-c", "shared_preload_libraries=pg_cron"],
        )
        args = build_postgres_args(config, opts)

        image_index = args.index("pgbox-pg17-custom:abc")
        assert args.index("TZ=UTC") < image_index
        assert args.index("-d") < image_index
        assert args[image_index + 1 :] == ["-c", "shared_preload_libraries=pg_cron"]


class TestSelectPgboxContainer:
    """Test container detection heuristics."""

    def test_prefers_pgbox_name(self):
        """Test that pgbox- names win over image matches."""
        rows = [("other", "postgres:16"), ("pgbox-pg17", "postgres:17")]
        assert select_pgbox_container(rows) == "pgbox-pg17"

    def test_falls_back_to_postgres_image(self):
        """Test detection by image."""
        rows = [("web", "nginx:latest"), ("db", "pgbox-pg17-custom:abc")]
        assert select_pgbox_container(rows) == "db"

    def test_no_match(self):
        """Test that unrelated containers are ignored."""
        assert select_pgbox_container([("web", "nginx")]) is None


class TestDockerManagerCommands:
    """Test subprocess-backed operations."""

    def test_run_command_streams_by_default(self):
        """Test plain command execution."""
        with patch("pgbox.docker.subprocess.run") as mock_run:
            assert DockerManager().run_command("logs", "x") == ""

        mock_run.assert_called_once_with(["docker", "logs", "x"], check=True)

    def test_run_command_captures_output(self):
        """Test captured combined output."""
        with patch("pgbox.docker.subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(stdout="abc123\n")
            output = DockerManager().run_command("run", "-d", "x", capture=True)

        assert output == "abc123\n"
        mock_run.assert_called_once_with(
            ["docker", "run", "-d", "x"],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            check=True,
        )

    def test_failure_includes_output(self):
        """Test that the captured output is appended to the error."""
        error = subprocess.CalledProcessError(
            125, ["docker", "run"], output="port is already allocated\n"
        )
        with patch("pgbox.docker.subprocess.run", side_effect=error):
            with pytest.raises(
                DockerCommandError,
                match="docker run failed with exit code 125: port is already allocated",
            ):
                DockerManager().run_command("run", capture=True)

    def test_missing_docker_binary(self):
        """Test a missing docker executable."""
        with patch("pgbox.docker.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(DockerCommandError, match="Docker not found"):
                DockerManager().run_command("ps")

    def test_run_postgres_captures_when_detached(self):
        """Test detached runs capture the container id."""
        manager = DockerManager()
        with patch.object(manager, "run_command", return_value="id") as mock_cmd:
            manager.run_postgres(
                PostgresConfig(), ContainerOptions(name="x", extra_args=["-d"])
            )
            assert mock_cmd.call_args.kwargs["capture"] is True

            manager.run_postgres(PostgresConfig(), ContainerOptions(name="x"))
            assert mock_cmd.call_args.kwargs["capture"] is False

    def test_build_image_arguments(self):
        """Test docker build invocation."""
        manager = DockerManager()
        with patch.object(manager, "run_command") as mock_cmd:
            manager.build_image("pgbox-pg17-custom:abc", "/tmp/ctx", {"PG_MAJOR": "17"})

        mock_cmd.assert_called_once_with(
            "build",
            "-t",
            "pgbox-pg17-custom:abc",
            "--build-arg",
            "PG_MAJOR=17",
            "/tmp/ctx",
        )

    def test_stream_logs_follow(self):
        """Test docker logs -f."""
        manager = DockerManager()
        with patch.object(manager, "run_command") as mock_cmd:
            manager.stream_logs("x", follow=True)

        mock_cmd.assert_called_once_with("logs", "-f", "x")


class TestDockerManagerQueries:
    """Test SDK-backed operations."""

    def test_requires_context_manager(self):
        """Test that SDK calls need an open client."""
        with pytest.raises(DockerCommandError, match="not properly initialized"):
            DockerManager().container_exists("x")

    def test_connection_failure(self):
        """Test that an unreachable daemon is reported."""
        with patch(
            "pgbox.docker.docker.from_env",
            side_effect=docker.errors.DockerException("no socket"),
        ):
            with pytest.raises(DockerCommandError, match="Cannot connect to Docker"):
                with DockerManager():
                    pass

    def test_client_closed_on_exit(self):
        """Test that the client is closed."""
        with patch("pgbox.docker.docker.from_env") as mock_from_env:
            with DockerManager():
                pass

        mock_from_env.return_value.close.assert_called_once()

    def test_container_exists_and_running(self):
        """Test existence and running checks."""
        with patch("pgbox.docker.docker.from_env") as mock_from_env:
            client = mock_from_env.return_value
            client.containers.get.return_value = _container("pgbox-pg17", "exited")

            with DockerManager() as docker_mgr:
                assert docker_mgr.container_exists("pgbox-pg17")
                assert not docker_mgr.is_container_running("pgbox-pg17")

            client.containers.get.side_effect = docker.errors.NotFound("gone")
            with DockerManager() as docker_mgr:
                assert not docker_mgr.container_exists("pgbox-pg17")

    def test_image_exists(self):
        """Test image lookup."""
        with patch("pgbox.docker.docker.from_env") as mock_from_env:
            client = mock_from_env.return_value
            with DockerManager() as docker_mgr:
                assert docker_mgr.image_exists("postgres:17")
                client.images.get.side_effect = docker.errors.ImageNotFound("no")
                assert not docker_mgr.image_exists("pgbox-pg17-custom:abc")

    def test_list_containers_filters_prefix(self):
        """Test that only prefixed containers are returned, sorted."""
        with patch("pgbox.docker.docker.from_env") as mock_from_env:
            client = mock_from_env.return_value
            client.containers.list.return_value = [
                _container("pgbox-pg18"),
                _container("my-pgbox-pg17"),
                _container("pgbox-pg16"),
            ]

            with DockerManager() as docker_mgr:
                names = [c.name for c in docker_mgr.list_containers(include_stopped=True)]

            assert names == ["pgbox-pg16", "pgbox-pg18"]
            client.containers.list.assert_called_once_with(
                all=True, filters={"name": "pgbox-"}
            )

    def test_container_env_and_port(self):
        """Test reading container configuration."""
        container = _container(
            "pgbox-pg17",
            env=["POSTGRES_DB=app", "POSTGRES_USER=me", "EMPTY="],
            ports={"5432/tcp": [{"HostIp": "0.0.0.0", "HostPort": "5433"}]},
        )
        with patch("pgbox.docker.docker.from_env") as mock_from_env:
            mock_from_env.return_value.containers.get.return_value = container
            with DockerManager() as docker_mgr:
                assert docker_mgr.get_container_env("pgbox-pg17", "POSTGRES_DB") == "app"
                assert docker_mgr.get_container_env("pgbox-pg17", "MISSING") is None
                assert docker_mgr.get_host_port("pgbox-pg17") == "5433"
                rows = docker_mgr.describe_containers([container])

        assert rows == [
            {
                "name": "pgbox-pg17",
                "image": "postgres:17",
                "status": "running",
                "ports": "5433->5432/tcp",
            }
        ]

    def test_find_pgbox_container(self):
        """Test detection across running containers."""
        with patch("pgbox.docker.docker.from_env") as mock_from_env:
            mock_from_env.return_value.containers.list.return_value = [
                _container("web", image="nginx"),
                _container("db", image="postgres:16"),
            ]
            with DockerManager() as docker_mgr:
                assert docker_mgr.find_pgbox_container() == "db"

    def test_lifecycle_actions(self):
        """Test start, stop and forced removal."""
        container = _container("pgbox-pg17")
        with patch("pgbox.docker.docker.from_env") as mock_from_env:
            mock_from_env.return_value.containers.get.return_value = container
            with DockerManager() as docker_mgr:
                docker_mgr.start_container("pgbox-pg17")
                docker_mgr.stop_container("pgbox-pg17")
                docker_mgr.remove_container("pgbox-pg17")

        container.start.assert_called_once()
        container.stop.assert_called_once()
        container.remove.assert_called_once_with(force=True)

    def test_action_failure_wrapped(self):
        """Test that SDK errors become DockerCommandError."""
        container = _container("pgbox-pg17")
        container.stop.side_effect = docker.errors.APIError("boom")
        with patch("pgbox.docker.docker.from_env") as mock_from_env:
            mock_from_env.return_value.containers.get.return_value = container
            with DockerManager() as docker_mgr:
                with pytest.raises(DockerCommandError, match="Failed to stop container"):
                    docker_mgr.stop_container("pgbox-pg17")

    def test_missing_container_action(self):
        """Test acting on a container that does not exist."""
        with patch("pgbox.docker.docker.from_env") as mock_from_env:
            mock_from_env.return_value.containers.get.side_effect = (
                docker.errors.NotFound("gone")
            )
            with DockerManager() as docker_mgr:
                with pytest.raises(DockerCommandError, match="No such container"):
                    docker_mgr.start_container("nope")

    def test_list_images_and_volumes(self):
        """Test image tags and volume names."""
        image_a = MagicMock(tags=["postgres:17", "postgres:latest"])
        image_b = MagicMock(tags=[])
        volume = MagicMock()
        volume.name = "pgbox-pg17-data"
        with patch("pgbox.docker.docker.from_env") as mock_from_env:
            client = mock_from_env.return_value
            client.images.list.return_value = [image_a, image_b]
            client.volumes.list.return_value = [volume]
            with DockerManager() as docker_mgr:
                assert docker_mgr.list_images() == ["postgres:17", "postgres:latest"]
                assert docker_mgr.list_volumes() == ["pgbox-pg17-data"]
                docker_mgr.remove_image("postgres:17")

            client.images.remove.assert_called_once_with(image="postgres:17", force=True)
