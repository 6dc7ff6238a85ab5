"""
Unit tests for BalanceTracker.

Refresh strategies (primary query, certified fallback, host rotation),
optimistic tickets and background polling.
"""

import time

import pytest
from unittest.mock import patch

from core.exceptions import TicketAlreadyResolvedError
from models.session import BalanceStatus
from services.balance_tracker import BalanceTracker


ALICE_START = 500_000_000


class TestRefresh:
    """Tests for refresh()."""

    def test_initial_hard_refresh_loads_balance(self, signed_in, balance_tracker, session_context):
        assert balance_tracker.balance_e8s == ALICE_START
        assert session_context.balance_status is BalanceStatus.OK

    def test_not_signed_in_is_a_no_op(self, balance_tracker, gateway):
        assert balance_tracker.refresh() is False
        assert gateway.calls == []

    def test_readiness_checked_before_read(self, signed_in, balance_tracker, gateway):
        gateway.calls.clear()
        balance_tracker.refresh()

        methods = [c[1] for c in gateway.calls]
        assert methods.index("icrc1_symbol") < methods.index("icrc1_balance_of")
        assert methods.index("icrc1_decimals") < methods.index("icrc1_balance_of")

    def test_picks_up_ledger_changes(self, signed_in, balance_tracker, gateway):
        gateway.balances[signed_in.principal] = 123
        assert balance_tracker.refresh()
        assert balance_tracker.balance_e8s == 123

    def test_primary_failure_uses_certified_fallback(self, signed_in, balance_tracker, gateway, hosts):
        gateway.balances[signed_in.principal] = 777
        gateway.fail("icrc1_balance_of", kind="query")
        gateway.calls.clear()

        assert balance_tracker.refresh()

        assert balance_tracker.balance_e8s == 777
        reads = gateway.calls_to("icrc1_balance_of")
        assert reads == [(hosts[0], "icrc1_balance_of", "query"), (hosts[0], "icrc1_balance_of", "call")]

    def test_normal_path_failure_marks_failed_once(self, signed_in, balance_tracker, gateway, session_context, notifier, hosts):
        gateway.fail("icrc1_balance_of", host=hosts[0])
        notifier.drain()

        assert balance_tracker.refresh() is False

        assert balance_tracker.balance_e8s == ALICE_START
        assert session_context.balance_status is BalanceStatus.FAILED
        messages = notifier.drain()
        assert len(messages) == 1
        assert messages[0].kind == "error"
        # Normal path never leaves the current host
        assert set(gateway.hosts_called("icrc1_balance_of")) == {hosts[0]}

    def test_hard_retry_rotates_to_next_host(self, signed_in, balance_tracker, gateway, session_context, hosts):
        gateway.balances[signed_in.principal] = 42
        gateway.fail("icrc1_balance_of", host=hosts[0])

        assert balance_tracker.refresh(hard_retry=True)

        assert balance_tracker.balance_e8s == 42
        assert session_context.connection.host == hosts[1]
        assert hosts[2] not in gateway.hosts_called("icrc1_balance_of")

    def test_hard_retry_exhaustion_is_terminal(self, signed_in, balance_tracker, gateway, notifier, session_context, hosts):
        gateway.fail("icrc1_balance_of")
        notifier.drain()

        assert balance_tracker.refresh(hard_retry=True) is False

        assert session_context.balance_status is BalanceStatus.FAILED
        assert set(gateway.hosts_called("icrc1_balance_of")) == set(hosts)
        assert len(notifier.drain()) == 1

    def test_hard_retry_tries_each_host_once_when_all_down(self, session_context, alice, balance_tracker, gateway, notifier, hosts):
        session_context.on_sign_in(alice)
        gateway.down.update(hosts)

        assert balance_tracker.refresh(hard_retry=True) is False

        assert gateway.hosts_called("icrc1_symbol") == hosts
        assert session_context.balance_status is BalanceStatus.FAILED
        assert len(notifier.drain()) == 1

    def test_hard_retry_rotation_never_revisits_a_host(self, signed_in, balance_tracker, gateway, hosts):
        gateway.fail("icrc1_balance_of")
        gateway.calls.clear()

        balance_tracker.refresh(hard_retry=True)

        symbol_hosts = [c[0] for c in gateway.calls if c[1] == "icrc1_symbol"]
        # one readiness check per host plus one liveness check per rotation
        assert symbol_hosts.count(hosts[0]) == 1
        assert symbol_hosts.count(hosts[1]) == 2
        assert symbol_hosts.count(hosts[2]) == 2

    def test_malformed_balance_reply_marks_failed(self, signed_in, balance_tracker, gateway, session_context, notifier):
        gateway.overrides["icrc1_balance_of"] = lambda args, identity: "not-a-number"
        notifier.drain()

        assert balance_tracker.refresh(hard_retry=True) is False

        assert session_context.balance_status is BalanceStatus.FAILED
        assert balance_tracker.balance_e8s == ALICE_START
        assert len(notifier.drain()) == 1

    def test_unexpected_error_never_escapes(self, signed_in, balance_tracker, session_context, notifier):
        with patch.object(balance_tracker, "_read_on", side_effect=KeyError("owner")):
            assert balance_tracker.refresh() is False

        assert session_context.balance_status is BalanceStatus.FAILED

        assert len(notifier.drain()) == 1

    def test_notify_false_is_silent(self, signed_in, balance_tracker, gateway, notifier):
        gateway.fail("icrc1_balance_of")
        notifier.drain()

        balance_tracker.refresh(notify=False)
        assert notifier.drain() == []

    def test_stale_result_discarded_after_sign_out(self, signed_in, balance_tracker, session_context):
        """A refresh that finishes after sign-out must not resurrect a balance."""

        def read_then_sign_out(handle, identity):
            session_context.on_sign_out()
            return 999

        with patch.object(balance_tracker, "_read_on", side_effect=read_then_sign_out):
            assert balance_tracker.refresh() is False

        assert session_context.balance_e8s == 0


class TestOptimisticTickets:
    """Tests for begin_optimistic / commit / rollback."""

    def test_rollback_restores_exact_value(self, signed_in, balance_tracker):
        ticket = balance_tracker.begin_optimistic(-100_010_000)
        assert balance_tracker.balance_e8s == ALICE_START - 100_010_000

        balance_tracker.rollback(ticket)
        assert balance_tracker.balance_e8s == ALICE_START

    def test_commit_keeps_deduction(self, signed_in, balance_tracker):
        ticket = balance_tracker.begin_optimistic(-10)
        balance_tracker.commit(ticket)
        assert balance_tracker.balance_e8s == ALICE_START - 10

    def test_commit_with_settled_delta(self, signed_in, balance_tracker):
        """The ledger charged a different fee than estimated."""
        ticket = balance_tracker.begin_optimistic(-100_010_000)
        balance_tracker.commit(ticket, settled_delta=-100_020_000)
        assert balance_tracker.balance_e8s == ALICE_START - 100_020_000

    @pytest.mark.parametrize("first, second", [
        ("commit", "commit"),
        ("commit", "rollback"),
        ("rollback", "rollback"),
        ("rollback", "commit"),
    ])
    def test_ticket_resolves_once(self, signed_in, balance_tracker, first, second):
        ticket = balance_tracker.begin_optimistic(-5)
        getattr(balance_tracker, first)(ticket)
        balance_before = balance_tracker.balance_e8s

        with pytest.raises(TicketAlreadyResolvedError):
            getattr(balance_tracker, second)(ticket)

        assert balance_tracker.balance_e8s == balance_before

    def test_optimistic_adjust_revert(self, signed_in, balance_tracker):
        revert = balance_tracker.optimistic_adjust(-50)
        assert balance_tracker.balance_e8s == ALICE_START - 50

        revert()
        assert balance_tracker.balance_e8s == ALICE_START
        with pytest.raises(TicketAlreadyResolvedError):
            revert()

    def test_rollback_after_sign_out_leaves_new_session_alone(self, signed_in, balance_tracker, session_context, alice):
        ticket = balance_tracker.begin_optimistic(-50)
        session_context.on_sign_in(alice)
        session_context.balance_e8s = 7

        balance_tracker.rollback(ticket)
        assert session_context.balance_e8s == 7


class TestPolling:
    """Tests for the background poller."""

    def test_poller_refreshes_and_stops(self, session_context, selector, notifier, gateway, alice):
        tracker = BalanceTracker(session_context, selector, notifier, poll_interval_seconds=0.01)
        session_context.on_sign_in(alice)
        gateway.balances[alice.principal] = 321

        tracker.start_polling()
        try:
            assert tracker.is_polling
            deadline = time.monotonic() + 5.0
            while tracker.balance_e8s != 321 and time.monotonic() < deadline:
                time.sleep(0.01)
            assert tracker.balance_e8s == 321
        finally:
            tracker.stop_polling()

        assert not tracker.is_polling

    def test_start_twice_is_harmless(self, balance_tracker):
        balance_tracker.start_polling()
        first = balance_tracker._thread
        balance_tracker.start_polling()
        try:
            assert balance_tracker._thread is first
        finally:
            balance_tracker.stop_polling()

    def test_poll_failures_do_not_notify(self, session_context, selector, notifier, gateway, alice):
        tracker = BalanceTracker(session_context, selector, notifier, poll_interval_seconds=0.01)
        session_context.on_sign_in(alice)
        gateway.fail("icrc1_balance_of")

        tracker.start_polling()
        try:
            deadline = time.monotonic() + 5.0
            while len(gateway.calls_to("icrc1_balance_of")) < 4 and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            tracker.stop_polling()

        assert notifier.drain() == []

    def test_poller_idle_while_signed_out(self, session_context, selector, notifier, gateway):
        tracker = BalanceTracker(session_context, selector, notifier, poll_interval_seconds=0.01)

        with patch("services.balance_tracker.logger") as log:
            tracker.start_polling()
            try:
                time.sleep(0.2)
            finally:
                tracker.stop_polling()

        assert gateway.calls == []
        assert tracker._consecutive_failures == 0
        log.warning.assert_not_called()
        log.error.assert_not_called()
