#!/usr/bin/python
# -*- coding: utf-8 -*-

from __future__ import annotations

import os

from ansible.module_utils.basic import AnsibleModule, env_fallback

from ansible.module_utils.cloud_api import (
    CloudApiError,
    ConfigError,
    ProviderConfig,
    fetch_images,
)
from ansible.module_utils.image_resolver import (
    AmbiguousOrNotFoundError,
    ConflictingInputsError,
    FetchError,
    ImageResolutionError,
    ImageResolver,
    ImageState,
    SelectionInputs,
)


DOCUMENTATION = r"""
---
module: cloud_image_info
short_description: Resolve a server image id of a cloud datacenter
description:
  - Resolves exactly one image id for a datacenter, either from the public
    image catalog (by id, os and/or code) or from a private image name.
  - Private image names are returned as-is, the catalog is not queried.
  - When the selection does not match exactly one public image the module
    fails and lists all available os / code / name combinations.
options:
  datacenter_id:
    description:
      - Id of the datacenter to resolve the image in.
    required: true
    type: str
  id:
    description:
      - Image id. Prefer os/code for public images or private_image_name.
    required: false
    type: str
  os:
    description:
      - Image OS, e.g. C(Ubuntu).
    required: false
    type: str
  code:
    description:
      - Image code, e.g. C(24.04 64bit).
    required: false
    type: str
  private_image_name:
    description:
      - Name of a private image. Must not be combined with os or code.
    required: false
    type: str
  api_url:
    description:
      - Base URL of the cloud API. Falls back to config_file, then C(CLOUD_API_URL).
    required: false
    type: str
  api_client_id:
    description:
      - API client id. Falls back to config_file, then C(CLOUD_API_CLIENT_ID).
    required: false
    type: str
  api_secret:
    description:
      - API secret. Falls back to config_file, then C(CLOUD_API_SECRET).
    required: false
    type: str
  config_file:
    description:
      - YAML file with api_url, api_client_id, api_secret and timeout keys.
        Falls back to C(CLOUD_API_CONFIG).
    required: false
    type: str
  timeout:
    description:
      - Request timeout in seconds. Falls back to config_file, then C(CLOUD_API_TIMEOUT).
    required: false
    type: float
requirements:
  - requests
  - PyYAML
author:
  - cloud-image-ansible maintainers
"""

EXAMPLES = r"""
- name: Resolve the Ubuntu 24.04 image in IL
  cloud_image_info:
    datacenter_id: IL
    os: Ubuntu
    code: 24.04 64bit
  delegate_to: localhost
  register: image

- name: Use a private image
  cloud_image_info:
    datacenter_id: IL
    private_image_name: my-golden-image
  delegate_to: localhost
  register: image
"""

RETURN = r"""
id:
  description: Resolved image id.
  type: str
  returned: success
os:
  description: OS of the resolved image, empty for private images.
  type: str
  returned: success
code:
  description: Code of the resolved image, empty for private images.
  type: str
  returned: success
image:
  description: Resolved id, os and code. Cleared fields on failure.
  type: dict
  returned: always
error:
  description: Failure kind (conflicting_inputs, fetch, not_found, config).
  type: str
  returned: failure
"""

ARGUMENT_SPEC = dict(
    datacenter_id=dict(type="str", required=True),
    id=dict(type="str", required=False, default=""),
    os=dict(type="str", required=False, default=""),
    code=dict(type="str", required=False, default=""),
    private_image_name=dict(type="str", required=False, default=""),
    api_url=dict(type="str", required=False),
    api_client_id=dict(type="str", required=False, no_log=True),
    api_secret=dict(type="str", required=False, no_log=True),
    config_file=dict(
        type="str", required=False, fallback=(env_fallback, ["CLOUD_API_CONFIG"])
    ),
    timeout=dict(type="float", required=False),
)

ERROR_KINDS = (
    (ConflictingInputsError, "conflicting_inputs"),
    (FetchError, "fetch"),
    (AmbiguousOrNotFoundError, "not_found"),
)


def _error_kind(exc: ImageResolutionError) -> str:
    if isinstance(exc.__cause__, ConfigError):
        return "config"
    for cls, kind in ERROR_KINDS:
        if isinstance(exc, cls):
            return kind
    return "resolution"


def run_module() -> None:
    module = AnsibleModule(
        argument_spec=ARGUMENT_SPEC,
        supports_check_mode=True,
    )
    params = module.params

    try:
        inputs = SelectionInputs(
            datacenter_id=params["datacenter_id"],
            id=params.get("id"),
            os=params.get("os"),
            code=params.get("code"),
            private_image_name=params.get("private_image_name"),
        )
    except ValueError as exc:
        module.fail_json(msg=str(exc), changed=False, error="config")

    state = ImageState.from_inputs(inputs)

    try:
        provider = ProviderConfig.from_sources(
            {key: params.get(key) for key in ("api_url", "api_client_id", "api_secret", "timeout")},
            config_file=params.get("config_file"),
            environ=os.environ,
        )
    except CloudApiError as exc:
        module.fail_json(msg=str(exc), changed=False, error="config", image=state.as_dict())

    def fetch(datacenter_id: str) -> list:
        module.debug(f"cloud_image_info: fetching image catalog of datacenter '{datacenter_id}'")
        return fetch_images(provider, datacenter_id)

    try:
        resolution = ImageResolver(fetch).read(inputs, state)
    except ImageResolutionError as exc:
        module.fail_json(
            msg=str(exc),
            changed=False,
            error=_error_kind(exc),
            image=state.as_dict(),
        )

    module.debug(f"cloud_image_info: resolved '{resolution.id}' (rule: {resolution.rule})")
    module.exit_json(changed=False, image=state.as_dict(), **state.as_dict())


def main() -> None:
    run_module()


if __name__ == "__main__":
    main()
