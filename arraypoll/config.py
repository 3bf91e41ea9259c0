# -----------------------------------------------------------------------------
# Copyright (c) 2025 ArrayPoll contributors
# Licensed under the MIT License. See LICENSE in project root for details.
# -----------------------------------------------------------------------------

import logging
import os
from pathlib import Path
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from arraypoll.errors import ConfigError
from arraypoll.models.result import Credentials

logger = logging.getLogger(__name__)

# Ensure .env from the project directory is loaded for local CLI runs
load_dotenv(dotenv_path=Path(__file__).parent.parent / ".env")

SUPPORTED_VENDORS = ("hp", "huawei", "dell", "ibm")

DEFAULT_SESSION_DIR = "cookie"
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_CALL_TIMEOUT = 30.0
# IBM consoles answer "too many requests" when the login form is posted right after the page load
DEFAULT_IBM_PRE_LOGIN_DELAY = 1.0


class VendorConfig(BaseModel):
    """Everything one backend driver needs; passed into the driver constructor."""
    vendor: str
    host: str
    ws_host: Optional[str] = None
    username: str
    password: str = Field(repr=False)
    session_file: str
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    call_timeout: float = DEFAULT_CALL_TIMEOUT
    pre_login_delay: float = 0.0
    enum_table: Optional[str] = None
    locale: Optional[str] = None

    @property
    def credentials(self) -> Credentials:
        return Credentials(username=self.username, password=self.password)

    @property
    def base_url(self) -> str:
        return self.host.rstrip('/')

    @property
    def websocket_url(self) -> str:
        if self.ws_host:
            return self.ws_host.rstrip('/')
        if self.base_url.startswith('https://'):
            return 'wss://' + self.base_url[len('https://'):]
        if self.base_url.startswith('http://'):
            return 'ws://' + self.base_url[len('http://'):]
        return f'wss://{self.base_url}'


class FileVendorConfig(BaseModel):
    host: Optional[str] = None
    ws_host: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    session_file: Optional[str] = None
    request_timeout: Optional[float] = None
    call_timeout: Optional[float] = None
    pre_login_delay: Optional[float] = None
    enum_table: Optional[str] = None
    locale: Optional[str] = None


class FileConfig(BaseModel):
    session_dir: Optional[str] = None
    request_timeout: Optional[float] = None
    call_timeout: Optional[float] = None
    vendors: Dict[str, FileVendorConfig] = Field(default_factory=dict)


class EnvConfig(BaseSettings):
    # Shared settings
    SESSION_DIR: str = Field(default=DEFAULT_SESSION_DIR)
    REQUEST_TIMEOUT: float = Field(default=DEFAULT_REQUEST_TIMEOUT)
    CALL_TIMEOUT: float = Field(default=DEFAULT_CALL_TIMEOUT)

    # Per-vendor console settings
    HP_HOST: Optional[str] = None
    HP_USERNAME: Optional[str] = None
    HP_PASSWORD: Optional[str] = None

    HUAWEI_HOST: Optional[str] = None
    HUAWEI_USERNAME: Optional[str] = None
    HUAWEI_PASSWORD: Optional[str] = None

    DELL_HOST: Optional[str] = None
    DELL_WS_HOST: Optional[str] = None
    DELL_USERNAME: Optional[str] = None
    DELL_PASSWORD: Optional[str] = None

    IBM_HOST: Optional[str] = None
    IBM_USERNAME: Optional[str] = None
    IBM_PASSWORD: Optional[str] = None
    IBM_PRE_LOGIN_DELAY: float = Field(default=DEFAULT_IBM_PRE_LOGIN_DELAY)

    model_config = SettingsConfigDict(
        env_prefix="ARRAYPOLL_",
        env_file=".env",
        case_sensitive=False,
        extra='ignore',  # Ignore extra fields in .env that aren't defined in the model
    )


class Settings:
    """
    Layered configuration: environment (and .env) first, then an optional
    YAML config file, then explicit overrides from the command line.
    """

    def __init__(self, config_file: Optional[str] = None):
        logger.debug("Loading configuration from environment variables")
        try:
            self._env_config = EnvConfig()
        except ValidationError as e:
            raise ConfigError(f"Invalid ARRAYPOLL_ environment settings: {e}") from e
        self._file_config = FileConfig()

        if config_file:
            self._file_config = self._load_file(config_file)

        self.session_dir = self._file_config.session_dir or self._env_config.SESSION_DIR
        self.request_timeout = self._file_config.request_timeout or self._env_config.REQUEST_TIMEOUT
        self.call_timeout = self._file_config.call_timeout or self._env_config.CALL_TIMEOUT

    @staticmethod
    def _load_file(config_file: str) -> FileConfig:
        logger.debug(f"Loading configuration from file: {config_file}")
        if not os.path.exists(config_file):
            raise ConfigError(f"Config file not found: {config_file}")
        try:
            with open(config_file, 'r') as f:
                data = yaml.safe_load(f) or {}
            return FileConfig(**data)
        except (OSError, yaml.YAMLError, TypeError, ValidationError) as e:
            raise ConfigError(f"Failed to load config from {config_file}: {e}") from e

    def _env_vendor_values(self, vendor: str) -> Dict[str, object]:
        prefix = vendor.upper()
        values = {}
        for key in ("host", "ws_host", "username", "password", "pre_login_delay"):
            attr = f"{prefix}_{key.upper()}"
            if hasattr(self._env_config, attr):
                value = getattr(self._env_config, attr)
                if value is not None:
                    values[key] = value
        return values

    def vendor_config(self, vendor: str, **overrides) -> VendorConfig:
        """
        Build the configuration for one vendor backend.

        Args:
            vendor: One of SUPPORTED_VENDORS
            overrides: Non-None values win over file and environment (CLI flags)

        Raises:
            ConfigError: Unknown vendor or missing host/credentials
        """
        if vendor not in SUPPORTED_VENDORS:
            raise ConfigError(f"Unsupported vendor '{vendor}', expected one of {', '.join(SUPPORTED_VENDORS)}")

        values: Dict[str, object] = {
            "vendor": vendor,
            "session_file": os.path.join(self.session_dir, f"{vendor}.cookie"),
            "request_timeout": self.request_timeout,
            "call_timeout": self.call_timeout,
        }
        values.update(self._env_vendor_values(vendor))

        file_vendor = self._file_config.vendors.get(vendor)
        if file_vendor:
            values.update({k: v for k, v in file_vendor.model_dump().items() if v is not None})

        values.update({k: v for k, v in overrides.items() if v is not None})

        missing = [key for key in ("host", "username", "password") if not values.get(key)]
        if missing:
            raise ConfigError(f"Missing {', '.join(missing)} for vendor '{vendor}'")

        try:
            return VendorConfig(**values)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration for vendor '{vendor}': {e}") from e
