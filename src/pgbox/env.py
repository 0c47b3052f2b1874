from dotenv import dotenv_values

ENV_FILE = ".env"


def _get_env_value(key: str, env_file: str = ENV_FILE) -> str | None:
    """Helper to read one setting from .env, treating blanks as unset."""
    config = dotenv_values(env_file)
    value = config.get(key)
    return value.strip() if value and value.strip() else None


def get_postgres_version(env_file: str = ENV_FILE) -> str | None:
    """Get the PostgreSQL major version from .env"""
    return _get_env_value("PGBOX_VERSION", env_file)


def get_postgres_port(env_file: str = ENV_FILE) -> str | None:
    """Get the published host port from .env"""
    return _get_env_value("PGBOX_PORT", env_file)


def get_database_user(env_file: str = ENV_FILE) -> str | None:
    """Get the PostgreSQL user from .env"""
    return _get_env_value("PGBOX_USER", env_file)


def get_database_password(env_file: str = ENV_FILE) -> str | None:
    """Get the PostgreSQL password from .env"""
    return _get_env_value("PGBOX_PASSWORD", env_file)


def get_database_name(env_file: str = ENV_FILE) -> str | None:
    """Get the PostgreSQL database name from .env"""
    return _get_env_value("PGBOX_DATABASE", env_file)
