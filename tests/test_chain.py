"""
Tests for the execution environment: native balances, clocks, call atomicity
and serialization of concurrent calls.
"""

import re
import threading
import time

import pytest

from bbse_bank.audit import AuditEventType
from bbse_bank.chain import Chain, new_address
from bbse_bank.clock import ManualClock, SystemClock
from bbse_bank.errors import InsufficientBalance, InvalidAmount, InvalidAddress
from bbse_bank.units import WEI_PER_ETHER


@pytest.fixture
def clock():
    return ManualClock(start=1_700_000_000)


@pytest.fixture
def chain(clock):
    return Chain(clock=clock)


class TestAddresses:

    def test_new_address_format(self):
        address = new_address()
        assert re.fullmatch(r"0x[0-9a-f]{40}", address)
        assert new_address() != address


class TestNativeBalances:
    """Test funding and transferring native currency"""

    def test_create_funded_account(self, chain):
        address = chain.create_account(100 * WEI_PER_ETHER)
        assert chain.get_balance(address) == 100 * WEI_PER_ETHER

    def test_unknown_address_has_zero_balance(self, chain):
        assert chain.get_balance("0xnobody") == 0

    def test_transfer_value(self, chain):
        alice = chain.create_account(5 * WEI_PER_ETHER)
        bob = chain.create_account()

        chain.transfer_value(alice, bob, 2 * WEI_PER_ETHER)

        assert chain.get_balance(alice) == 3 * WEI_PER_ETHER
        assert chain.get_balance(bob) == 2 * WEI_PER_ETHER

    def test_transfer_more_than_balance(self, chain):
        alice = chain.create_account(WEI_PER_ETHER)
        bob = chain.create_account()

        with pytest.raises(InsufficientBalance, match="Transfer amount exceeds balance"):
            chain.transfer_value(alice, bob, WEI_PER_ETHER + 1)

        assert chain.get_balance(alice) == WEI_PER_ETHER
        assert chain.get_balance(bob) == 0

    def test_invalid_amounts(self, chain):
        alice = chain.create_account(WEI_PER_ETHER)
        with pytest.raises(InvalidAmount):
            chain.transfer_value(alice, "0xbob", -1)
        with pytest.raises(InvalidAmount):
            chain.fund(alice, 1.5)

    def test_blank_address(self, chain):
        with pytest.raises(InvalidAddress):
            chain.fund("", WEI_PER_ETHER)

    def test_funding_is_audited(self, chain):
        address = chain.create_account(WEI_PER_ETHER)
        events = chain.audit_trail.get_events_for_entity("account", address)
        assert events[0].event_type == AuditEventType.ACCOUNT_FUNDED
        assert events[0].metadata["amount"] == WEI_PER_ETHER


class TestCallAtomicity:
    """Test that a failing call leaves no partial effects"""

    def test_failed_call_rolls_back_transfers(self, chain):
        alice = chain.create_account(10 * WEI_PER_ETHER)
        bob = chain.create_account()
        events_before = chain.audit_trail.count_events()

        with pytest.raises(InsufficientBalance):
            with chain.call():
                chain.transfer_value(alice, bob, 4 * WEI_PER_ETHER)
                chain.transfer_value(bob, alice, 5 * WEI_PER_ETHER)

        assert chain.get_balance(alice) == 10 * WEI_PER_ETHER
        assert chain.get_balance(bob) == 0
        assert chain.audit_trail.count_events() == events_before

    def test_successful_call_commits_everything(self, chain):
        alice = chain.create_account(10 * WEI_PER_ETHER)
        bob = chain.create_account()

        with chain.call():
            chain.transfer_value(alice, bob, 4 * WEI_PER_ETHER)
            chain.transfer_value(bob, alice, WEI_PER_ETHER)

        assert chain.get_balance(alice) == 7 * WEI_PER_ETHER
        assert chain.get_balance(bob) == 3 * WEI_PER_ETHER


class TestConcurrentCalls:
    """Concurrent callers are serialized by the chain"""

    def test_parallel_transfers_conserve_value(self, chain):
        accounts = [chain.create_account(10 * WEI_PER_ETHER) for _ in range(8)]
        sink = chain.create_account()
        errors = []

        def worker(address):
            try:
                for _ in range(10):
                    chain.transfer_value(address, sink, WEI_PER_ETHER // 10)
            except Exception as e:  # surfaced through the errors list
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(a,)) for a in accounts]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert chain.get_balance(sink) == 8 * WEI_PER_ETHER
        total = sum(chain.get_balance(a) for a in accounts) + chain.get_balance(sink)
        assert total == 80 * WEI_PER_ETHER
        assert chain.audit_trail.verify_integrity()["valid"]


class TestClocks:

    def test_manual_clock(self, clock, chain):
        assert chain.timestamp() == 1_700_000_000
        assert clock.advance(60) == 1_700_000_060
        assert chain.timestamp() == 1_700_000_060
        assert chain.now().timestamp() == 1_700_000_060

    def test_manual_clock_never_moves_back(self, clock):
        with pytest.raises(ValueError):
            clock.advance(-1)
        with pytest.raises(ValueError):
            clock.set(1_600_000_000)
        clock.set(1_800_000_000)
        assert clock.timestamp() == 1_800_000_000

    def test_manual_clock_must_start_positive(self):
        with pytest.raises(ValueError):
            ManualClock(start=0)

    def test_system_clock(self):
        clock = SystemClock()
        first = clock.timestamp()
        assert first > 0
        assert abs(first - time.time()) < 5
        assert clock.timestamp() >= first
