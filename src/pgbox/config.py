from dataclasses import dataclass

from . import env

DEFAULT_VERSION = "18"
SUPPORTED_VERSIONS = ("16", "17", "18")
DEFAULT_PORT = "5432"
CONTAINER_PORT = "5432"


def validate_postgres_version(version: str) -> None:
    """Reject PostgreSQL versions pgbox does not support."""
    if version not in SUPPORTED_VERSIONS:
        raise ValueError(
            f"invalid PostgreSQL version: {version} "
            f"(must be one of {', '.join(SUPPORTED_VERSIONS)})"
        )


def parse_extension_list(extension_list: str | None) -> list[str]:
    """Split a comma-separated extension list, dropping blanks."""
    if not extension_list:
        return []
    return [name.strip() for name in extension_list.split(",") if name.strip()]


@dataclass
class PostgresConfig:
    """Connection and image settings for one PostgreSQL container."""

    version: str = DEFAULT_VERSION
    port: str = DEFAULT_PORT
    database: str = "postgres"
    user: str = "postgres"
    password: str = "postgres"
    custom_image: str = ""

    def image(self) -> str:
        """Image to run: the custom build if there is one, else postgres:<version>."""
        if self.custom_image:
            return self.custom_image
        return f"postgres:{self.version}"

    @classmethod
    def resolve(
        cls,
        version: str | None = None,
        port: str | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        env_file: str = env.ENV_FILE,
    ) -> "PostgresConfig":
        """
        Build a config from explicit values, then .env, then defaults.

        Args:
            version: PostgreSQL major version from the command line
            port: Host port from the command line
            database: Database name from the command line
            user: PostgreSQL user from the command line
            password: PostgreSQL password from the command line
            env_file: Path of the .env file to read overrides from

        Returns:
            PostgresConfig with every field resolved

        Raises:
            ValueError: If the resolved version is not supported
        """
        defaults = cls()
        config = cls(
            version=version or env.get_postgres_version(env_file) or defaults.version,
            port=port or env.get_postgres_port(env_file) or defaults.port,
            database=database or env.get_database_name(env_file) or defaults.database,
            user=user or env.get_database_user(env_file) or defaults.user,
            password=password
            if password is not None
            else env.get_database_password(env_file) or defaults.password,
        )
        validate_postgres_version(config.version)
        return config
