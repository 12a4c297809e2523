"""Constants for pyenvi library."""

from __future__ import annotations


# API Configuration
DEFAULT_BASE_URL = "https://app-apis.enviliving.com"
DEFAULT_TIMEOUT = 15  # seconds
DEVICE_TYPE = "homeassistant"
LOGIN_TYPE = 1

# Endpoints
LOGIN_PATH = "/apis/v1/auth/login"
DEVICE_LIST_PATH = "/apis/v1/device/list"
DEVICE_PATH = "/apis/v1/device/{device_id}"
DEVICE_UPDATE_PATH = "/apis/v1/device/update-temperature/{device_id}"

STATUS_SUCCESS = "success"
DEVICE_STATUS_AVAILABLE = 1

# Token lifecycle
SESSION_MAX_AGE_MINUTES = 60
TOKEN_REFRESH_MIN_REMAINING_MINUTES = 10
TOKEN_REFRESH_LEAD_MINUTES = 5

# JWT Token Constants
JWT_MIN_PARTS = 2
BASE64_PADDING_MODULO = 4

# Polling
DEFAULT_POLL_MINUTES = 5
POLL_MINUTES_MIN = 1
POLL_MINUTES_MAX = 60
HEATING_POLL_MINUTES = 2
INITIAL_REFRESH_DELAY = 2  # seconds
CONFIRMATION_REFRESH_DELAY = 2  # seconds

# Circuit breaker
FAILURE_THRESHOLD = 5
CIRCUIT_COOLDOWN_MINUTES = 30
LATENCY_WINDOW = 10

# Setpoint validation (Fahrenheit)
SETPOINT_MIN = 50
SETPOINT_MAX = 85
TEMPERATURE_UNIT = "F"

# Child devices
LOCAL_ID_PREFIX = "envi-"
LABEL_PREFIX = "Envi Heater"

# Scheduler job names
JOB_REFRESH_ALL = "refresh_all"
JOB_INITIAL_REFRESH = "initial_refresh"
JOB_REFRESH_TOKEN = "refresh_token"
JOB_CIRCUIT_RESET = "circuit_reset"
JOB_REFRESH_DEVICE = "refresh_device_{device_id}"

# State store keys
STORE_SESSION = "session"
STORE_HEALTH = "health"
STORE_DEVICE_IDS = "device_ids"
STORE_DEVICE_INSTANCE_ID = "device_instance_id"
