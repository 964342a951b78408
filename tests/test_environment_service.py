"""
Tests for environment preparation.
"""
import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from pki_bootstrap.models.config import Config
from pki_bootstrap.models.errors import EnvironmentSetupError
from pki_bootstrap.services.environment_service import EnvironmentService, ensure_directory


class TestEnsureDirectory(unittest.TestCase):
    """Test cases for ensure_directory."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_creates_missing_directory_with_parents(self):
        """Test creating a nested directory."""
        target = Path(self.temp_dir) / "a" / "b" / "c"

        self.assertTrue(ensure_directory(target))
        self.assertTrue(target.is_dir())

    def test_existing_directory_is_noop(self):
        """Test that an existing directory is left alone."""
        self.assertFalse(ensure_directory(self.temp_dir))
        self.assertFalse(ensure_directory(self.temp_dir))

    def test_path_is_a_file(self):
        """Test that a regular file in the way is an environment error."""
        target = os.path.join(self.temp_dir, "pki")
        Path(target).write_text("not a directory")

        with self.assertRaises(EnvironmentSetupError):
            ensure_directory(target)

    @patch('pathlib.Path.mkdir')
    def test_creation_failure(self, mock_mkdir):
        """Test that an OS error during creation is fatal."""
        mock_mkdir.side_effect = PermissionError("permission denied")

        with self.assertRaises(EnvironmentSetupError) as cm:
            ensure_directory(os.path.join(self.temp_dir, "locked"))
        self.assertIn("permission denied", str(cm.exception))


class TestEnvironmentService(unittest.TestCase):
    """Test cases for EnvironmentService."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config = Config(
            bin_dir=os.path.join(self.temp_dir, "bin"),
            pki_dir=os.path.join(self.temp_dir, "pki"),
            pki_profile_dir=os.path.join(self.temp_dir, "pki", "profiles"),
        )

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_setup_environment_creates_all_directories(self):
        """Test that all three directories are created on first run."""
        created = EnvironmentService(self.config).setup_environment()

        self.assertEqual(len(created), 3)
        for directory in (self.config.bin_dir, self.config.pki_dir, self.config.pki_profile_dir):
            self.assertTrue(os.path.isdir(directory))

    def test_setup_environment_is_idempotent(self):
        """Test that a second run creates nothing."""
        service = EnvironmentService(self.config)
        service.setup_environment()

        self.assertEqual(service.setup_environment(), [])


if __name__ == '__main__':
    unittest.main()
