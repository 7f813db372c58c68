"""
Configuration settings for the circuit lab notebook backend.

This module handles all configuration settings including the storage
backend, database connections, and other environment variables.
"""

import logging
from typing import Optional, Dict, Any
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from functools import lru_cache


STORAGE_BACKENDS = {'memory', 'local', 'database', 'firestore'}


class Settings(BaseSettings):
    """
    Application settings with environment variable support.
    """

    # FastAPI Configuration
    app_name: str = Field(
        default="Circuit Lab Notebook API",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # API Configuration
    api_host: str = Field(
        default="localhost",
        description="API server host"
    )
    api_port: int = Field(
        default=8000,
        description="API server port"
    )

    # CORS Configuration
    cors_origins: str = Field(
        default="*",
        description="CORS origins (configure for production)"
    )

    # Storage Configuration
    storage_backend: str = Field(
        default="local",
        description="Record store: memory, local, database or firestore"
    )
    local_store_path: str = Field(
        default="./data/circuit-lab-notebook.json",
        description="Notebook file used by the local backend"
    )
    backup_path: str = Field(
        default="./data/circuit-lab-notebook.backup.json",
        description="Local copy read when the store is unreachable (empty disables)"
    )
    seed_initial_record: bool = Field(
        default=True,
        description="Start a new local notebook with one blank record"
    )
    undo_limit: Optional[int] = Field(
        default=None,
        description="Maximum deleted records kept for undo (unset keeps all)"
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./data/notebook.db",
        description="SQLAlchemy URL for the database backend"
    )
    database_echo: bool = Field(
        default=False,
        description="Log SQL statements"
    )
    firestore_project_id: Optional[str] = Field(
        default=None,
        description="Firebase project ID for data persistence"
    )
    firestore_collection: str = Field(
        default="experiment_records",
        description="Firestore collection holding the records"
    )

    # Identity
    owner_id: Optional[str] = Field(
        default=None,
        description="Identity stamped on new records; unset means unauthenticated"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    @field_validator('storage_backend')
    def validate_storage_backend(cls, v):
        """Validate storage backend is one of the known stores."""
        v = v.lower()
        if v not in STORAGE_BACKENDS:
            raise ValueError(f'Storage backend must be one of: {STORAGE_BACKENDS}')
        return v

    @field_validator('log_level')
    def validate_log_level(cls, v):
        """Validate log level is valid."""
        valid_levels = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore"
    }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def get_firestore_client(settings: Optional[Settings] = None):
    """Get Firestore client if configured."""
    settings = settings or get_settings()
    if not settings.firestore_project_id:
        logging.getLogger(__name__).warning("Firestore project ID not configured.")
        return None

    from google.cloud import firestore
    return firestore.Client(project=settings.firestore_project_id)


def initialize_logging() -> None:
    """Initialize logging configuration based on settings."""
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        force=True,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler('circuit_lab_notebook.log') if not settings.debug else logging.NullHandler()
        ]
    )

    # Set specific loggers
    logging.getLogger('uvicorn').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.INFO if settings.database_echo else logging.WARNING)


def get_system_info() -> Dict[str, Any]:
    """
    Get system configuration information for debugging.

    Returns:
        Dictionary with system configuration details
    """
    settings = get_settings()
    return {
        "app_name": settings.app_name,
        "app_version": settings.app_version,
        "debug": settings.debug,
        "log_level": settings.log_level,
        "api_host": settings.api_host,
        "api_port": settings.api_port,
        "storage_backend": settings.storage_backend,
        "backup_enabled": bool(settings.backup_path),
        "has_owner": bool(settings.owner_id),
    }
