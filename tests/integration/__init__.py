"""Integration tests for the pyenvi library.

These tests use real API credentials from .env file and make actual API calls.
They are marked with @pytest.mark.integration and skipped by default.

To run integration tests:
    pytest tests/integration -v -m integration

Environment variables required in .env:
    ENVI_USERNAME: Account email
    ENVI_PASSWORD: Account password
    ENVI_API_BASE_URL: API base URL (optional, defaults to production)
    ENVI_DEVICE_ID: Fixed device instance ID (optional)
"""
