"""
Tests for the command line entry point.

pytest is required to run these tests.
"""

import importlib
from unittest import mock

import admission_desk.main as entry


def test_import_leaves_logging_alone():
    with mock.patch("logging.basicConfig") as basic:
        importlib.reload(entry)
    basic.assert_not_called()


def test_headless_run_configures_logging_and_syncs_once():
    with mock.patch("logging.basicConfig") as basic, \
            mock.patch.object(entry, "DEFAULT_ADMIN_SECRET", ""), \
            mock.patch.object(entry, "SyncService") as service_cls:
        entry.main(["--db", ":memory:", "--no-gui"])
    basic.assert_called_once()
    service = service_cls.return_value
    service.auto_login_and_pull.assert_called_once_with()
    service.auto_setup.assert_not_called()
    service.close.assert_called_once_with()
