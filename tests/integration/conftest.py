"""Pytest configuration and fixtures for integration tests."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

from pyenvi.config import BridgeConfig


# Load .env file from project root
env_path = Path(__file__).parents[2] / ".env"
load_dotenv(env_path)


@pytest.fixture(scope="session")
def integration_config() -> BridgeConfig:
    """Load integration test configuration from environment.

    Returns:
        BridgeConfig built from the ENVI_* variables.

    Raises:
        ValueError: If required environment variables are missing.
    """
    if not os.getenv("ENVI_USERNAME") or not os.getenv("ENVI_PASSWORD"):
        msg = "Missing required environment variables. Please create .env file with ENVI_USERNAME and ENVI_PASSWORD"
        raise ValueError(msg)

    return BridgeConfig.from_env()


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for integration tests."""
    config.addinivalue_line("markers", "integration: Integration tests requiring real API access")
