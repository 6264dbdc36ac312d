"""Common utilities shared across the index components.

Includes:
- ``config``: Pydantic-based configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``errors``: the error taxonomy raised across components.
- ``metrics``: Prometheus metrics helpers.
- ``events``: Redis pub/sub notifications for index updates.

Import pattern:
- from talent_index.common.config import BaseConfig
- from talent_index.common.logging import configure_logging
"""
