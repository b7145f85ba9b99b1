"""
Tests for cli -- siig-switch argument parsing and dispatch.

Tests cover:
- main() with no args (switches), --version, subcommand dispatch
- switch() timeout handling and exit codes
- detect() listing with mocked device_detector
- setup_udev() dry run, non-root and root install
- configure() show and save
"""

import io
import os
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest.mock import MagicMock, mock_open, patch

from siig_switch.cli import UDEV_RULES_PATH, _setup_logging, configure, detect, main, setup_udev
from siig_switch.cli import switch as cli_switch
from siig_switch.errors import EnumerationError


def _mock_token(desc="1:2 [2101:1406]"):
    token = MagicMock()
    token.describe.return_value = desc
    token.released = False
    return token


# -- main() ------------------------------------------------------------------

class TestMainEntryPoint(unittest.TestCase):
    """Test main() CLI dispatch."""

    def test_version(self):
        buf = io.StringIO()
        with redirect_stdout(buf), self.assertRaises(SystemExit) as ctx:
            main(['--version'])
        self.assertEqual(ctx.exception.code, 0)
        self.assertIn("siig-switch 1.0.0", buf.getvalue())

    @patch('siig_switch.cli.switch', return_value=0)
    def test_no_args_switches(self, mock_switch):
        self.assertEqual(main([]), 0)
        mock_switch.assert_called_once_with()

    @patch('siig_switch.cli.switch', return_value=1)
    def test_switch_subcommand(self, mock_switch):
        self.assertEqual(main(['switch', '-t', '250']), 1)
        mock_switch.assert_called_once_with(timeout_ms=250)

    @patch('siig_switch.cli.detect', return_value=0)
    def test_dispatch_detect(self, mock_detect):
        self.assertEqual(main(['detect']), 0)
        mock_detect.assert_called_once()

    @patch('siig_switch.cli.setup_udev', return_value=0)
    def test_dispatch_setup_udev(self, mock_fn):
        main(['setup-udev', '--dry-run'])
        mock_fn.assert_called_once_with(dry_run=True)

    @patch('siig_switch.cli.configure', return_value=0)
    def test_dispatch_config(self, mock_fn):
        main(['config', '--timeout', '200'])
        mock_fn.assert_called_once_with(timeout_ms=200)

    @patch('logging.basicConfig')
    def test_logging_tiers(self, mock_basic):
        import logging
        _setup_logging(0)
        self.assertEqual(mock_basic.call_args[1]['level'], logging.WARNING)
        _setup_logging(1)
        self.assertEqual(mock_basic.call_args[1]['level'], logging.INFO)
        _setup_logging(2)
        self.assertEqual(mock_basic.call_args[1]['level'], logging.DEBUG)
        self.assertEqual(logging.getLogger('usb').level, logging.INFO)


# -- switch() ------------------------------------------------------------------

class TestSwitch(unittest.TestCase):

    @patch('siig_switch.kvm_device.switch', return_value=True)
    @patch('siig_switch.conf.get_timeout_ms', return_value=180)
    def test_uses_saved_timeout(self, _, mock_switch):
        self.assertEqual(cli_switch(), 0)
        mock_switch.assert_called_once_with(timeout_ms=180)

    @patch('siig_switch.kvm_device.switch', return_value=True)
    def test_explicit_timeout(self, mock_switch):
        self.assertEqual(cli_switch(timeout_ms=50), 0)
        mock_switch.assert_called_once_with(timeout_ms=50)

    @patch('siig_switch.kvm_device.switch', return_value=False)
    def test_failure_exit_code(self, _):
        self.assertEqual(cli_switch(timeout_ms=100), 1)

    @patch('siig_switch.kvm_device.switch')
    def test_rejects_non_positive_timeout(self, mock_switch):
        buf = io.StringIO()
        with redirect_stderr(buf):
            self.assertEqual(cli_switch(timeout_ms=0), 1)
        self.assertIn("positive", buf.getvalue())
        mock_switch.assert_not_called()


# -- detect() ------------------------------------------------------------------

class TestDetect(unittest.TestCase):

    def _run(self, tokens=None, side_effect=None):
        buf = io.StringIO()
        with patch('siig_switch.usb_backend.PyUsbBackend'), \
             patch('siig_switch.device_detector.find_devices',
                   return_value=tokens, side_effect=side_effect), \
             patch('siig_switch.device_detector.release_all') as mock_release, \
             redirect_stdout(buf), redirect_stderr(buf):
            rc = detect()
        return rc, buf.getvalue(), mock_release

    def test_one_device(self):
        token = _mock_token()
        rc, out, mock_release = self._run([token])
        self.assertEqual(rc, 0)
        self.assertIn("[1] 1:2 [2101:1406]", out)
        mock_release.assert_called_once_with([token])

    def test_two_devices_warns(self):
        tokens = [_mock_token(), _mock_token("1:3 [2101:1406]")]
        rc, out, mock_release = self._run(tokens)
        self.assertEqual(rc, 0)
        self.assertIn("[2] 1:3 [2101:1406]", out)
        self.assertIn("More than one", out)
        mock_release.assert_called_once_with(tokens)

    def test_no_devices(self):
        rc, out, _ = self._run([])
        self.assertEqual(rc, 1)
        self.assertIn("No KVM dongle", out)

    def test_enumeration_error(self):
        rc, out, mock_release = self._run(side_effect=EnumerationError("no bus", -1))
        self.assertEqual(rc, 1)
        self.assertIn("Error:", out)
        mock_release.assert_not_called()


# -- setup_udev() --------------------------------------------------------------

class TestSetupUdev(unittest.TestCase):
    """Test setup_udev() command."""

    def test_dry_run(self):
        buf = io.StringIO()
        with redirect_stdout(buf):
            self.assertEqual(setup_udev(dry_run=True), 0)
        out = buf.getvalue()
        self.assertIn('ATTRS{idVendor}=="2101"', out)
        self.assertIn('ATTRS{idProduct}=="1406"', out)
        self.assertIn(UDEV_RULES_PATH, out)

    @patch('os.geteuid', return_value=1000)
    def test_not_root(self, _):
        with redirect_stderr(io.StringIO()):
            self.assertEqual(setup_udev(dry_run=False), 1)

    @patch('siig_switch.cli.subprocess.run')
    @patch('os.geteuid', return_value=0)
    @patch('builtins.open', new_callable=mock_open)
    def test_root_writes_rule(self, m_open, _, mock_subproc):
        with redirect_stdout(io.StringIO()):
            self.assertEqual(setup_udev(dry_run=False), 0)
        m_open.assert_called_once_with(UDEV_RULES_PATH, "w")
        written = m_open().write.call_args[0][0]
        self.assertIn('MODE="0666"', written)
        mock_subproc.assert_any_call(["udevadm", "control", "--reload-rules"], check=False)
        mock_subproc.assert_any_call(["udevadm", "trigger"], check=False)

    @patch('siig_switch.cli.subprocess.run')
    @patch('os.geteuid', return_value=0)
    @patch('builtins.open', side_effect=PermissionError("read-only"))
    def test_root_write_failure(self, _, __, mock_subproc):
        with redirect_stderr(io.StringIO()):
            self.assertEqual(setup_udev(dry_run=False), 1)
        mock_subproc.assert_not_called()


# -- configure() ---------------------------------------------------------------

class TestConfigure(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        config_dir = os.path.join(self._tmp.name, 'siig-switch')
        self.config_path = os.path.join(config_dir, 'config.json')
        for p in (patch('siig_switch.conf.CONFIG_DIR', config_dir),
                  patch('siig_switch.conf.CONFIG_PATH', self.config_path)):
            p.start()
            self.addCleanup(p.stop)

    def test_show_default(self):
        buf = io.StringIO()
        with redirect_stdout(buf):
            self.assertEqual(configure(), 0)
        self.assertIn("timeout_ms: 100", buf.getvalue())
        self.assertIn(self.config_path, buf.getvalue())

    def test_save_then_show(self):
        with redirect_stdout(io.StringIO()):
            self.assertEqual(configure(timeout_ms=400), 0)
        buf = io.StringIO()
        with redirect_stdout(buf):
            configure()
        self.assertIn("timeout_ms: 400", buf.getvalue())

    def test_save_invalid(self):
        buf = io.StringIO()
        with redirect_stderr(buf):
            self.assertEqual(configure(timeout_ms=-1), 1)
        self.assertIn("Error:", buf.getvalue())
        self.assertFalse(os.path.exists(self.config_path))
