# lookup_plugins/cloud_image.py
#
# Resolve a cloud server image for a datacenter.
#
# usage:
#   {{ lookup('cloud_image', 'IL', os='Ubuntu', code='24.04 64bit') }}     # -> image id
#   {{ lookup('cloud_image', 'IL', code='24.04 64bit', want='os') }}       # -> "Ubuntu"
#   {{ lookup('cloud_image', 'IL', os='Ubuntu', code='24.04 64bit', want='') }}
#                                                                          # -> {id, os, code}
#   {{ lookup('cloud_image', 'IL', private_image_name='my-golden-image') }}  # no API call
#
# terms:
#   - datacenter ids, one result per term
#
# options:
#   - id, os, code, private_image_name   selection inputs
#   - want                               "id" (default), "os", "code" or "" for the dict
#   - api_url, api_client_id, api_secret, timeout, config_file
#
# connection settings fall back to the variables CLOUD_API_URL,
# CLOUD_API_CLIENT_ID, CLOUD_API_SECRET, CLOUD_API_TIMEOUT, CLOUD_API_CONFIG,
# then to a YAML config file, then to the environment of the controller.

from __future__ import annotations

from typing import Any, Dict

from ansible.errors import AnsibleError
from ansible.plugins.lookup import LookupBase
from ansible.utils.display import Display

from module_utils.cloud_api import (
    CONFIG_KEYS,
    ENV_CONFIG_FILE,
    ENV_VARS,
    CloudApiError,
    ProviderConfig,
    fetch_images,
)
from module_utils.image_resolver import (
    ImageResolutionError,
    ImageResolver,
    SelectionInputs,
)

display = Display()

SELECTION_KEYS = ("id", "os", "code", "private_image_name")
WANT_CHOICES = ("", "id", "os", "code")


def _connection_options(kwargs: Dict[str, Any], variables: Dict[str, Any]) -> Dict[str, Any]:
    """kwargs first, then playbook variables named like the environment."""
    options: Dict[str, Any] = {}
    for key in CONFIG_KEYS:
        value = kwargs.get(key)
        if value in (None, ""):
            value = variables.get(ENV_VARS[key])
        if value not in (None, ""):
            options[key] = value
    return options


class LookupModule(LookupBase):
    def run(self, terms, variables=None, **kwargs):
        variables = variables or {}
        terms = terms or []
        if not terms:
            raise AnsibleError("cloud_image: requires at least one datacenter id term")

        unknown = sorted(
            set(kwargs) - set(SELECTION_KEYS) - set(CONFIG_KEYS) - {"want", "config_file"}
        )
        if unknown:
            raise AnsibleError(f"cloud_image: unsupported option(s): {', '.join(unknown)}")

        want = kwargs.get("want", "id")
        want = "" if want is None else str(want).strip()
        if want not in WANT_CHOICES:
            raise AnsibleError(
                f"cloud_image: want must be one of {list(WANT_CHOICES)}, got '{want}'"
            )

        config_file = kwargs.get("config_file") or variables.get(ENV_CONFIG_FILE)
        try:
            provider = ProviderConfig.from_sources(
                _connection_options(kwargs, variables), config_file=config_file
            )
        except CloudApiError as exc:
            raise AnsibleError(f"cloud_image: {exc}") from exc

        def fetch(datacenter_id: str) -> list:
            display.vvv(
                f"cloud_image: fetching image catalog of datacenter '{datacenter_id}' "
                f"from {provider.api_url}"
            )
            images = fetch_images(provider, datacenter_id)
            display.vvvv(f"cloud_image: catalog has {len(images)} image(s)")
            return images

        resolver = ImageResolver(fetch)
        selection = {key: kwargs.get(key) for key in SELECTION_KEYS}

        results = []
        for term in terms:
            try:
                inputs = SelectionInputs(datacenter_id=term, **selection)
            except ValueError as exc:
                raise AnsibleError(f"cloud_image: {exc}") from exc

            try:
                resolution = resolver.resolve(inputs)
            except ImageResolutionError as exc:
                raise AnsibleError(f"cloud_image: {exc}") from exc

            display.vvv(
                f"cloud_image: datacenter '{inputs.datacenter_id}' resolved to "
                f"'{resolution.id}' (rule: {resolution.rule})"
            )
            image = resolution.as_dict()
            results.append(image[want] if want else image)

        return results
