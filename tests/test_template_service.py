"""
Tests for request and signing-policy generation.
"""
import json
import os
import shutil
import tempfile
import unittest
from datetime import timedelta

from pki_bootstrap.models.config import Config
from pki_bootstrap.models.profiles import (
    CertificateRequest, KeySpec, SigningPolicy, SigningProfile, parse_duration
)
from pki_bootstrap.services.template_service import (
    TemplateService, load_request, load_signing_policy
)


class TestParseDuration(unittest.TestCase):
    """Test cases for duration parsing."""

    def test_valid_durations(self):
        """Test the duration forms used in policies."""
        self.assertEqual(parse_duration("43800h"), timedelta(hours=43800))
        self.assertEqual(parse_duration("1h30m"), timedelta(minutes=90))
        self.assertEqual(parse_duration("90s"), timedelta(seconds=90))
        self.assertEqual(parse_duration("0h"), timedelta(0))

    def test_invalid_durations(self):
        """Test strings that are not durations."""
        for value in ["", "5y", "h", "-1h", "10", None]:
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    parse_duration(value)


class TestProfileModels(unittest.TestCase):
    """Test cases for policy and request models."""

    def test_profile_requires_positive_expiry(self):
        """Test that a zero expiry is rejected."""
        with self.assertRaises(ValueError):
            SigningProfile(expiry="0h", usages=["signing"])

    def test_profile_requires_usages(self):
        """Test that an empty usage list is rejected."""
        with self.assertRaises(ValueError):
            SigningProfile(expiry="1h", usages=[])

    def test_policy_requires_both_profiles(self):
        """Test that a policy without the client profile is rejected."""
        with self.assertRaises(ValueError) as cm:
            SigningPolicy(
                default_expiry="1h",
                profiles={"server": SigningProfile(expiry="1h", usages=["server auth"])}
            )
        self.assertIn("client", str(cm.exception))

    def test_unknown_profile(self):
        """Test looking up a profile that does not exist."""
        with self.assertRaises(ValueError):
            SigningPolicy.default().get_profile("intermediate")

    def test_key_spec_validation(self):
        """Test unsupported key algorithms and sizes."""
        with self.assertRaises(ValueError):
            KeySpec(algo="dsa", size=2048)
        with self.assertRaises(ValueError):
            KeySpec(algo="ecdsa", size=2048)

    def test_request_from_malformed_dict(self):
        """Test parsing a request without a key section."""
        with self.assertRaises(ValueError):
            CertificateRequest.from_dict({"CN": "api"})

    def test_request_drops_empty_host_placeholder(self):
        """Test that an empty-string host placeholder means no SAN."""
        request = CertificateRequest.from_dict({
            "CN": "alice",
            "hosts": [""],
            "key": {"algo": "rsa", "size": 4096},
        })
        self.assertEqual(request.san_hosts, [])


class TestTemplateService(unittest.TestCase):
    """Test cases for TemplateService."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.config = Config(
            ca_name="demo",
            domain="example.com",
            email_domain="mail.example.com",
            servers=("api",),
            users=("alice",),
            pki_profile_dir=self.temp_dir,
        )
        self.service = TemplateService(self.config)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _read(self, name):
        with open(os.path.join(self.temp_dir, name)) as f:
            return json.load(f)

    def test_generate_ca_request(self):
        """Test the CA request document."""
        doc = self.service.generate_ca_request()

        data = self._read("ca-csr.json")
        self.assertEqual(doc.path, self.service.ca_request_path)
        self.assertEqual(data["CN"], "demo")
        self.assertEqual(data["key"], {"algo": "rsa", "size": 2048})
        self.assertNotIn("hosts", data)

    def test_generate_signing_policy(self):
        """Test the policy invariants of the generated document."""
        self.service.generate_signing_policy()

        data = self._read("ca-config.json")
        profiles = data["signing"]["profiles"]
        self.assertEqual(data["signing"]["default"]["expiry"], "43800h")
        self.assertEqual(set(profiles), {"server", "client"})

        for name, profile in profiles.items():
            with self.subTest(profile=name):
                self.assertTrue(profile["usages"])
                self.assertGreater(parse_duration(profile["expiry"]), timedelta(0))

        self.assertIn("server auth", profiles["server"]["usages"])
        self.assertIn("client auth", profiles["server"]["usages"])
        self.assertIn("client auth", profiles["client"]["usages"])
        self.assertNotIn("server auth", profiles["client"]["usages"])

    def test_generate_server_request(self):
        """Test that a server request carries exactly one SAN."""
        doc = self.service.generate_server_request("api")

        data = self._read("api-csr.json")
        self.assertEqual(data["CN"], "api")
        self.assertEqual(data["hosts"], ["api.example.com"])
        self.assertEqual(data["key"], {"algo": "ecdsa", "size": 256})
        self.assertNotIn("names", data)
        self.assertEqual(doc.request.san_hosts, ["api.example.com"])

    def test_generate_client_request(self):
        """Test the client request subject fields and empty SAN list."""
        self.service.generate_client_request("alice")

        data = self._read("alice-csr.json")
        self.assertEqual(data["CN"], "alice")
        self.assertEqual(data["hosts"], [])
        self.assertEqual(data["key"], {"algo": "rsa", "size": 4096})
        self.assertEqual(data["names"], [{"O": "alice", "email": "alice@mail.example.com"}])

    def test_request_builders_write_nothing(self):
        """Test that building a request for comparison leaves the directory untouched."""
        server = self.service.server_request("api")
        client = self.service.client_request("alice")

        self.assertEqual(server.san_hosts, ["api.example.com"])
        self.assertEqual(client.name_attribute("email"), "alice@mail.example.com")
        self.assertEqual(os.listdir(self.temp_dir), [])

    def test_documents_are_overwritten_identically(self):
        """Test that regeneration produces byte-identical documents."""
        self.service.generate_signing_policy()
        self.service.generate_server_request("api")
        with open(os.path.join(self.temp_dir, "ca-config.json"), 'rb') as f:
            first_policy = f.read()
        with open(os.path.join(self.temp_dir, "api-csr.json"), 'rb') as f:
            first_request = f.read()

        self.service.generate_signing_policy()
        self.service.generate_server_request("api")

        with open(os.path.join(self.temp_dir, "ca-config.json"), 'rb') as f:
            self.assertEqual(f.read(), first_policy)
        with open(os.path.join(self.temp_dir, "api-csr.json"), 'rb') as f:
            self.assertEqual(f.read(), first_request)

    def test_documents_load_back(self):
        """Test reading generated documents back into models."""
        self.service.generate_signing_policy()
        doc = self.service.generate_client_request("alice")

        policy = load_signing_policy(self.service.signing_policy_path)
        request = load_request(doc.path)

        self.assertEqual(policy.get_profile("client").expiry_delta, timedelta(hours=43800))
        self.assertEqual(request.name_attribute("email"), "alice@mail.example.com")
        self.assertEqual(request.san_hosts, [])


if __name__ == '__main__':
    unittest.main()
