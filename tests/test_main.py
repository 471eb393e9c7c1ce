"""
Tests for the launcher: config file reading, token lookup and --check.
"""
import io
import json
import os
import shutil
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

import main


class TestLauncher(unittest.TestCase):
    """Test configuration handling before the bot starts."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = Path(self.temp_dir) / "config.json"

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_config(self, config):
        self.config_path.write_text(json.dumps(config), encoding='utf-8')

    def test_missing_config_file(self):
        """Test a missing file names the example to copy."""
        with self.assertRaises(main.StartupError) as context:
            main.read_config_file(self.config_path)
        self.assertIn("config.example.json", str(context.exception))

    def test_invalid_json(self):
        """Test broken JSON is reported."""
        self.config_path.write_text("{not json", encoding='utf-8')
        with self.assertRaises(main.StartupError):
            main.read_config_file(self.config_path)

    def test_config_must_be_object(self):
        """Test a JSON list is refused."""
        self.write_config([1, 2])
        with self.assertRaises(main.StartupError):
            main.read_config_file(self.config_path)

    def test_environment_token_wins(self):
        """Test DISCORD_BOT_TOKEN overrides the config file."""
        with patch.dict(os.environ, {'DISCORD_BOT_TOKEN': 'from-env'}):
            self.assertEqual(main.resolve_token({'bot': {'token': 'from-file'}}), 'from-env')

    def test_placeholder_token_refused(self):
        """Test the example placeholder does not count as a token."""
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(main.StartupError):
                main.resolve_token({'bot': {'token': main.TOKEN_PLACEHOLDER}})
            self.assertEqual(main.resolve_token({'bot': {'token': 'abc'}}), 'abc')

    def test_check_reports_healthy_config(self):
        """Test --check exits cleanly for a writable store location."""
        self.write_config({'game': {'store_path': os.path.join(self.temp_dir, "store.json")}})
        output = io.StringIO()

        with redirect_stdout(output):
            code = main.main(['--config', str(self.config_path), '--check'])

        self.assertEqual(code, 0)
        self.assertIn("Game Settings:", output.getvalue())
        self.assertIn("✅ Configuration looks good", output.getvalue())

    def test_check_reports_corrupt_store(self):
        """Test --check fails when the store file cannot be loaded."""
        store_path = os.path.join(self.temp_dir, "store.json")
        with open(store_path, 'w', encoding='utf-8') as f:
            f.write("[broken")
        self.write_config({'game': {'store_path': store_path, 'hint_pack_size': 500}})
        output = io.StringIO()

        with redirect_stdout(output):
            code = main.main(['--config', str(self.config_path), '--check'])

        self.assertEqual(code, 1)
        self.assertIn("Ignored setting", output.getvalue())
        self.assertIn("Invalid JSON", output.getvalue())

    def test_startup_error_returns_failure(self):
        """Test a missing config file ends with exit code 1."""
        output = io.StringIO()
        with redirect_stdout(output):
            code = main.main(['--config', str(self.config_path)])
        self.assertEqual(code, 1)


if __name__ == '__main__':
    unittest.main()
