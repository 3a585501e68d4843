#
# Unit tests for lookup_plugins/cloud_image.py.
#
# Notes:
# - No HTTP traffic: fetch_images is patched in the plugin module.
# - No Ansible runtime needed beyond importing LookupBase.

import unittest
from unittest.mock import patch

from ansible.errors import AnsibleError

from lookup_plugins.cloud_image import LookupModule
from module_utils.cloud_api import CloudApiError

CATALOG = [
    {"id": "IL:ubuntu-2404", "os": "Ubuntu", "code": "24.04 64bit", "name": "Ubuntu 24.04 64-bit"},
    {"id": "IL:ubuntu-2204", "os": "Ubuntu", "code": "22.04 64bit", "name": "Ubuntu 22.04 64-bit"},
    {"id": "IL:debian-12", "os": "Debian", "code": "12 64bit", "name": "Debian 12 64-bit"},
]

CREDENTIALS = {"CLOUD_API_CLIENT_ID": "client", "CLOUD_API_SECRET": "secret"}


class CloudImageLookupTests(unittest.TestCase):
    def setUp(self):
        self.fetch_patch = patch("lookup_plugins.cloud_image.fetch_images")
        self.mock_fetch = self.fetch_patch.start()
        self.mock_fetch.return_value = CATALOG

    def tearDown(self):
        self.fetch_patch.stop()

    def _run(self, terms, variables=None, **kwargs):
        if variables is None:
            variables = dict(CREDENTIALS)
        return LookupModule().run(terms, variables=variables, **kwargs)

    def test_returns_id_by_default(self):
        res = self._run(["IL"], os="Ubuntu", code="24.04 64bit")
        self.assertEqual(res, ["IL:ubuntu-2404"])

    def test_want_empty_returns_full_dict(self):
        res = self._run(["IL"], os="Debian", want="")
        self.assertEqual(
            res, [{"id": "IL:debian-12", "os": "Debian", "code": "12 64bit"}]
        )

    def test_want_os_for_code_selection(self):
        res = self._run(["IL"], code="22.04 64bit", want="os")
        self.assertEqual(res, ["Ubuntu"])

    def test_one_result_per_datacenter(self):
        res = self._run(["IL", "EU"], os="Debian")
        self.assertEqual(res, ["IL:debian-12", "IL:debian-12"])
        self.assertEqual([c.args[1] for c in self.mock_fetch.call_args_list], ["IL", "EU"])

    def test_provider_built_from_variables(self):
        self._run(["IL"], variables={**CREDENTIALS, "CLOUD_API_URL": "https://api.example.test"}, os="Debian")
        provider = self.mock_fetch.call_args.args[0]
        self.assertEqual(provider.api_url, "https://api.example.test")
        self.assertEqual(provider.api_client_id, "client")
        self.assertEqual(provider.api_secret, "secret")

    def test_kwargs_override_variables(self):
        self._run(["IL"], os="Debian", api_client_id="other")
        self.assertEqual(self.mock_fetch.call_args.args[0].api_client_id, "other")

    def test_private_image_does_not_fetch(self):
        res = self._run(["IL"], variables={}, private_image_name="golden")
        self.assertEqual(res, ["golden"])
        self.mock_fetch.assert_not_called()

    def test_private_image_with_os_conflicts(self):
        with self.assertRaises(AnsibleError) as ctx:
            self._run(["IL"], private_image_name="golden", os="Ubuntu")
        self.assertIn("private_image_name", str(ctx.exception))

    def test_ambiguous_os_lists_catalog(self):
        with self.assertRaises(AnsibleError) as ctx:
            self._run(["IL"], os="Ubuntu")
        message = str(ctx.exception)
        self.assertIn("cloud_image: could not find matching image", message)
        self.assertIn('"Ubuntu 22.04 64-bit"', message)
        self.assertIn('"Debian 12 64-bit"', message)

    def test_fetch_failure_is_reported(self):
        self.mock_fetch.side_effect = CloudApiError("error response: 500 Internal Server Error")
        with self.assertRaises(AnsibleError) as ctx:
            self._run(["IL"], os="Debian")
        self.assertIn("500 Internal Server Error", str(ctx.exception))

    def test_requires_terms(self):
        with self.assertRaises(AnsibleError):
            self._run([], os="Debian")

    def test_empty_datacenter_term(self):
        with self.assertRaises(AnsibleError) as ctx:
            self._run(["  "], os="Debian")
        self.assertIn("datacenter_id", str(ctx.exception))

    def test_invalid_want(self):
        with self.assertRaises(AnsibleError):
            self._run(["IL"], os="Debian", want="name")

    def test_unknown_option(self):
        with self.assertRaises(AnsibleError) as ctx:
            self._run(["IL"], os="Debian", flavor="x")
        self.assertIn("flavor", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
