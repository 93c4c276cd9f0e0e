#!/usr/bin/env python3
"""
Unit tests for the terraform runner
"""

import unittest
import sys
import os
import subprocess
from unittest.mock import MagicMock, patch

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../src'))

from cfn_terraform_exporter.exceptions import TerraformNotFoundError, TerraformRunnerError
from cfn_terraform_exporter.runner import TerraformRunner, extract_error


class TestExtractError(unittest.TestCase):

    def test_first_error_line(self):
        lines = ["", "aws_vpc.Vpc: Importing...", "Error: resource not found", "Error: second"]
        self.assertEqual(extract_error(lines), "resource not found")

    def test_indented_error(self):
        self.assertEqual(extract_error(["  Error: boom"]), "boom")

    def test_no_error(self):
        self.assertIsNone(extract_error(["Import successful!"]))


class TestTerraformRunner(unittest.TestCase):
    """Test spawning terraform with a mocked subprocess"""

    def setUp(self):
        patcher = patch("cfn_terraform_exporter.runner.shutil.which", return_value="/usr/bin/terraform")
        self.which = patcher.start()
        self.addCleanup(patcher.stop)
        self.runner = TerraformRunner("/tmp/workspace", environment={"AWS_REGION": "us-east-1"}, timeout=30)

    def test_locates_terraform(self):
        self.assertEqual(self.runner.terraform_path, "/usr/bin/terraform")
        self.which.assert_called_with("terraform")

    def test_missing_terraform(self):
        self.which.return_value = None
        with self.assertRaises(TerraformNotFoundError):
            TerraformRunner("/tmp/workspace")

    @patch("cfn_terraform_exporter.runner.subprocess.run")
    def test_successful_command(self, run):
        run.return_value = MagicMock(stdout="Import prepared!\nImport successful!\n", returncode=0)
        sink = []

        self.assertTrue(self.runner.run("import", True, False, sink, "-no-color", "aws_vpc.Vpc", "vpc-0abc"))

        self.assertEqual(sink, ["Import prepared!", "Import successful!"])
        arguments = run.call_args[0][0]
        self.assertEqual(arguments, ["/usr/bin/terraform", "import", "-no-color", "aws_vpc.Vpc", "vpc-0abc"])
        kwargs = run.call_args[1]
        self.assertEqual(kwargs["env"]["AWS_REGION"], "us-east-1")
        self.assertEqual(kwargs["env"]["TF_IN_AUTOMATION"], "1")
        self.assertEqual(kwargs["timeout"], 30)

    @patch("cfn_terraform_exporter.runner.subprocess.run")
    def test_failure_returns_false(self, run):
        run.return_value = MagicMock(stdout="Error: Cannot import non-existent remote object\n", returncode=1)
        sink = []

        self.assertFalse(self.runner.run("import", False, True, sink, "aws_vpc.Vpc", "vpc-0abc"))
        self.assertEqual(extract_error(sink), "Cannot import non-existent remote object")

    @patch("cfn_terraform_exporter.runner.subprocess.run")
    def test_failure_raises_when_required(self, run):
        run.return_value = MagicMock(stdout="Error: no configuration\n", returncode=1)

        with self.assertRaises(TerraformRunnerError) as context:
            self.runner.run("init", True, False, None)

        self.assertEqual(context.exception.command, "init")
        self.assertEqual(context.exception.exit_code, 1)
        self.assertEqual(context.exception.output, ["Error: no configuration"])

    @patch("cfn_terraform_exporter.runner.subprocess.run")
    def test_timeout_is_an_error(self, run):
        run.side_effect = subprocess.TimeoutExpired(cmd="terraform", timeout=30)
        sink = []

        self.assertFalse(self.runner.run("import", False, False, sink, "aws_vpc.Vpc", "vpc-0abc"))
        self.assertEqual(extract_error(sink), "terraform import timed out after 30 seconds")


if __name__ == '__main__':
    unittest.main()
