# module_utils/cloud_api.py
#
# Thin client for the cloud management API.
#
# Provides:
#   - ProviderConfig: explicit connection handle (url, credentials, timeout)
#   - request():      one JSON request against the API
#   - fetch_images(): public image catalog of a datacenter
#
# Configuration precedence (first non-empty value wins, per field):
#   1. explicit options (lookup kwargs / module params)
#   2. YAML credentials file (config_file option or CLOUD_API_CONFIG)
#   3. environment variables CLOUD_API_URL, CLOUD_API_CLIENT_ID,
#      CLOUD_API_SECRET, CLOUD_API_TIMEOUT
#   4. defaults

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from urllib.parse import quote

import requests
import yaml

DEFAULT_API_URL = "https://cloudcli.cloudwm.com"
DEFAULT_TIMEOUT = 60.0

CONFIG_KEYS = ("api_url", "api_client_id", "api_secret", "timeout")

ENV_VARS = {
    "api_url": "CLOUD_API_URL",
    "api_client_id": "CLOUD_API_CLIENT_ID",
    "api_secret": "CLOUD_API_SECRET",
    "timeout": "CLOUD_API_TIMEOUT",
}
ENV_CONFIG_FILE = "CLOUD_API_CONFIG"


class CloudApiError(Exception):
    """Any failure talking to the cloud API (transport, status, decoding)."""


class ConfigError(CloudApiError):
    pass


def as_str(value: Any, strip: bool = True) -> str:
    if value is None:
        return ""
    text = str(value)
    return text.strip() if strip else text


def _load_config_file(path: str) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in config file {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"config file {path} must contain a mapping, got {type(data).__name__}"
        )
    return {k: data[k] for k in CONFIG_KEYS if k in data}


def _parse_timeout(value: Any) -> float:
    try:
        timeout = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"timeout must be a number, got {value!r}") from exc
    if timeout <= 0:
        raise ConfigError(f"timeout must be positive, got {timeout}")
    return timeout


@dataclass(frozen=True)
class ProviderConfig:
    api_url: str = DEFAULT_API_URL
    api_client_id: str = ""
    api_secret: str = ""
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_sources(
        cls,
        options: Optional[Mapping[str, Any]] = None,
        config_file: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ProviderConfig":
        """
        Merge explicit options, an optional YAML file and the environment.

        ``config_file`` falls back to $CLOUD_API_CONFIG. Empty strings and
        None count as "not set" at every layer.
        """
        options = options or {}
        environ = os.environ if environ is None else environ

        path = as_str(config_file) or as_str(environ.get(ENV_CONFIG_FILE))
        file_values = _load_config_file(path) if path else {}

        merged: dict[str, Any] = {}
        for key in CONFIG_KEYS:
            for layer in (options.get(key), file_values.get(key), environ.get(ENV_VARS[key])):
                if as_str(layer):
                    merged[key] = layer
                    break

        return cls(
            api_url=as_str(merged.get("api_url")) or DEFAULT_API_URL,
            api_client_id=as_str(merged.get("api_client_id")),
            api_secret=as_str(merged.get("api_secret")),
            timeout=_parse_timeout(merged.get("timeout", DEFAULT_TIMEOUT)),
        )

    def require_credentials(self) -> None:
        missing = [
            name
            for name, value in (
                ("api_client_id", self.api_client_id),
                ("api_secret", self.api_secret),
            )
            if not value
        ]
        if missing:
            raise ConfigError(
                "missing API credentials: "
                + ", ".join(missing)
                + f" (set them as options, in a config file or via "
                f"{ENV_VARS['api_client_id']} / {ENV_VARS['api_secret']})"
            )

    def url_for(self, path: str) -> str:
        return f"{self.api_url.rstrip('/')}/{path.lstrip('/')}"


def request(
    provider: ProviderConfig, method: str, path: str, body: Any = None
) -> Any:
    """
    Perform one API call and return the decoded JSON value.

    Raises CloudApiError for transport failures, non-200 responses and
    bodies that are not JSON.
    """
    provider.require_credentials()

    headers = {
        "AuthClientId": provider.api_client_id,
        "AuthSecret": provider.api_secret,
        "Accept": "application/json",
        "Content-Type": "application/json",
    }

    try:
        response = requests.request(
            method,
            provider.url_for(path),
            headers=headers,
            json=body,
            timeout=provider.timeout,
        )
    except requests.RequestException as exc:
        raise CloudApiError(f"{method} {path} failed: {exc}") from exc

    try:
        result = response.json()
    except ValueError as exc:
        if response.status_code != 200:
            raise CloudApiError(
                f"error response: {response.status_code} {response.reason}"
            ) from exc
        raise CloudApiError(f"invalid JSON in response to {method} {path}: {exc}") from exc

    if response.status_code != 200:
        raise CloudApiError(f"error response: {result}")

    return result


def fetch_images(provider: ProviderConfig, datacenter_id: str) -> list:
    path = f"service/server?images=1&datacenter={quote(datacenter_id, safe='')}"
    result = request(provider, "GET", path)
    if not isinstance(result, list):
        raise CloudApiError(
            f"unexpected image catalog payload, expected a list, got {type(result).__name__}"
        )
    return result
