"""
Unit tests for logging_config: record context, principal redaction and
handler setup.
"""

import logging
import threading

import pytest

from logging_config import (
    APP_NAMESPACE,
    NO_PURCHASE,
    ThreadContextFilter,
    current_purchase_id,
    get_logger,
    get_purchase_logger,
    purchase_context,
    redact_principal,
    setup_logging,
)


def make_record():
    return logging.LogRecord("test", logging.INFO, __file__, 1, "hello", None, None)


class TestPurchaseContext:

    def test_filter_tags_records_inside_context(self):
        record = make_record()
        with purchase_context("a1b2c3d4-0000-0000-0000-000000000000"):
            assert ThreadContextFilter().filter(record) is True

        assert record.purchase_id == "a1b2c3d4"
        assert record.thread_name == threading.current_thread().name

    def test_filter_outside_context(self):
        record = make_record()
        ThreadContextFilter().filter(record)
        assert record.purchase_id == NO_PURCHASE

    def test_nested_context_restores_outer(self):
        with purchase_context("outer-id-1234"):
            with purchase_context("inner-id-5678"):
                assert current_purchase_id() == "inner-id"
            assert current_purchase_id() == "outer-id"
        assert current_purchase_id() is None

    def test_context_is_per_thread(self):
        seen = []
        with purchase_context("main-thread-id"):
            worker = threading.Thread(target=lambda: seen.append(current_purchase_id()))
            worker.start()
            worker.join(5.0)

        assert seen == [None]

    def test_context_restored_after_exception(self):
        with pytest.raises(RuntimeError):
            with purchase_context("failing-purchase"):
                raise RuntimeError("boom")
        assert current_purchase_id() is None


class TestRedactPrincipal:

    @pytest.mark.parametrize("principal, expected", [
        ("rrkah-fqaaa-aaaaa-aaaaq-cai", "rrkah-...-cai"),
        ("alice-principal", "alice-principal"),
        ("alice", "alice"),
        ("", "anonymous"),
        (None, "anonymous"),
    ])
    def test_redaction(self, principal, expected):
        assert redact_principal(principal) == expected


class TestLoggers:

    def test_child_loggers_share_namespace(self):
        assert get_logger("services.host_selector").name == f"{APP_NAMESPACE}.services.host_selector"
        assert get_logger(f"{APP_NAMESPACE}.app").name == f"{APP_NAMESPACE}.app"

    def test_purchase_logger_uses_short_id(self):
        assert get_purchase_logger("a1b2c3d4-ffff").name == f"{APP_NAMESPACE}.purchase.a1b2c3d4"

    def test_setup_replaces_handlers(self, tmp_path):
        name = "pixel_billboard_test_setup"
        try:
            setup_logging(app_name=name, log_dir=tmp_path, enable_file_logging=True)
            root = setup_logging(app_name=name, log_dir=tmp_path, enable_file_logging=True)

            assert len(root.handlers) == 3
            assert all(any(isinstance(f, ThreadContextFilter) for f in h.filters) for h in root.handlers)
            assert (tmp_path / f"{name}.log").exists()
            assert (tmp_path / f"{name}_error.log").exists()
        finally:
            for handler in list(logging.getLogger(name).handlers):
                logging.getLogger(name).removeHandler(handler)
                handler.close()

    def test_console_only_without_file_logging(self, tmp_path):
        name = "pixel_billboard_test_console"
        root = setup_logging(app_name=name, log_dir=tmp_path, enable_file_logging=False)
        try:
            assert len(root.handlers) == 1
            assert list(tmp_path.iterdir()) == []
        finally:
            for handler in list(root.handlers):
                root.removeHandler(handler)
                handler.close()
