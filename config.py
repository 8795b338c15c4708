# ============================================================================
# CLAUDE CONTEXT - APPLICATION CONFIGURATION
# ============================================================================
# STATUS: Core Infrastructure - Configuration Management
# PURPOSE: Centralized PostgreSQL connection settings with managed identity support
# EXPORTS: AppConfig, get_app_config, get_postgres_connection_string
# DEPENDENCIES: pydantic-settings, azure-identity
# SOURCE: Environment variables, .env file, Azure managed identity
# PATTERNS: Singleton pattern for config, lazy initialization for credentials
# ============================================================================

"""
Application Configuration Module

Provides the connection settings for the PostgreSQL database that holds
the process catalog (``meta.processes``) and the job records
(``meta.jobs``).

Authentication Modes:
    1. Password-based (local development):
       - Requires: POSTGIS_HOST, POSTGIS_USER, POSTGIS_PASSWORD
       - Use when: USE_MANAGED_IDENTITY=false or not set

    2. Managed Identity (Azure production):
       - Requires: System-assigned managed identity enabled
       - Use when: USE_MANAGED_IDENTITY=true

Usage:
    from config import get_postgres_connection_string

    conn = psycopg.connect(get_postgres_connection_string())
"""

import logging
from typing import Optional
from functools import lru_cache
from urllib.parse import quote_plus

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Scope for Azure Database for PostgreSQL AAD tokens
POSTGRES_AAD_SCOPE = "https://ossrdbms-aad.database.windows.net/.default"


# ============================================================================
# Application Configuration
# ============================================================================

class AppConfig(BaseSettings):
    """
    Application-wide configuration loaded from environment variables.

    Attributes:
        postgis_host: PostgreSQL server hostname
        postgis_port: PostgreSQL server port
        postgis_database: Database name
        postgis_user: Database username
        postgis_password: Database password (optional with managed identity)
        postgis_sslmode: libpq sslmode (Azure requires "require")
        use_managed_identity: Enable Azure managed identity authentication
    """

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    postgis_host: str = Field(..., description="PostgreSQL hostname")
    postgis_port: int = Field(default=5432, description="PostgreSQL port")
    postgis_database: str = Field(..., description="Database name")
    postgis_user: str = Field(..., description="Database username")
    postgis_password: Optional[str] = Field(default=None, description="Database password")
    postgis_sslmode: str = Field(default="require", description="libpq sslmode")

    use_managed_identity: bool = Field(
        default=False,
        description="Use Azure managed identity for authentication"
    )

    @model_validator(mode="after")
    def validate_password(self) -> "AppConfig":
        """Ensure password is provided when not using managed identity."""
        if not self.use_managed_identity and not self.postgis_password:
            raise ValueError(
                "POSTGIS_PASSWORD is required when USE_MANAGED_IDENTITY=false"
            )
        return self


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """
    Get singleton application configuration instance.

    Raises:
        pydantic.ValidationError: If required environment variables are missing
    """
    return AppConfig()


# ============================================================================
# PostgreSQL Connection String Generation
# ============================================================================

def get_postgres_connection_string() -> str:
    """
    Generate PostgreSQL connection string based on authentication mode.

    Returns:
        str: PostgreSQL connection string (psycopg format)
    """
    config = get_app_config()

    if config.use_managed_identity:
        return _build_managed_identity_connection_string(config)
    return _build_password_connection_string(config)


def _build_connection_string(config: AppConfig, secret: str) -> str:
    return (
        f"postgresql://{config.postgis_user}:{quote_plus(secret)}"
        f"@{config.postgis_host}:{config.postgis_port}"
        f"/{config.postgis_database}"
        f"?sslmode={config.postgis_sslmode}"
    )


def _build_password_connection_string(config: AppConfig) -> str:
    """
    Build password-based connection string.

    Password is URL-encoded to handle special characters like @ symbols.
    """
    logger.info(f"Building password-based connection string for {config.postgis_host}")
    return _build_connection_string(config, config.postgis_password)


def _build_managed_identity_connection_string(config: AppConfig) -> str:
    """
    Build managed identity connection string with Azure AD token.

    Note:
        Token is acquired synchronously and has limited lifetime (~1 hour).
        Connections are opened per operation, so every call fetches a token
        through the credential's own cache.
    """
    from azure.identity import DefaultAzureCredential
    from azure.core.exceptions import ClientAuthenticationError

    logger.info(f"Building managed identity connection string for {config.postgis_host}")

    try:
        token = DefaultAzureCredential().get_token(POSTGRES_AAD_SCOPE)
    except ClientAuthenticationError as e:
        logger.error(f"Failed to acquire managed identity token: {e}")
        raise ValueError(
            f"Managed identity authentication failed: {e}. "
            "Ensure system-assigned managed identity is enabled and has database permissions."
        ) from e

    logger.info("✅ Successfully acquired managed identity token")
    return _build_connection_string(config, token.token)


# ============================================================================
# Configuration Validation
# ============================================================================

def validate_configuration() -> bool:
    """
    Validate configuration on application startup.

    Raises:
        Exception: If configuration validation fails
    """
    try:
        config = get_app_config()
        logger.info("Configuration validation:")
        logger.info(f"  PostgreSQL Host: {config.postgis_host}")
        logger.info(f"  PostgreSQL Port: {config.postgis_port}")
        logger.info(f"  Database: {config.postgis_database}")
        logger.info(f"  User: {config.postgis_user}")
        logger.info(f"  Managed Identity: {config.use_managed_identity}")

        get_postgres_connection_string()
        logger.info("✅ Connection string generated successfully")
        return True

    except Exception as e:
        logger.error(f"❌ Configuration validation failed: {e}")
        raise


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    validate_configuration()
