"""Tests for the single-fire acknowledgment channel."""

import threading
from datetime import datetime, timedelta, timezone

from stocktake.services.acknowledgment import AcknowledgmentChannel


def make_channel(**kwargs):
    return AcknowledgmentChannel(token="inventory_printed", **kwargs)


class TestConsume:

    def test_accepts_once(self):
        channel = make_channel()
        channel.expect(1)
        assert channel.consume(1, "inventory_printed") == AcknowledgmentChannel.ACCEPTED
        assert channel.consume(1, "inventory_printed") == AcknowledgmentChannel.NOT_AWAITED

    def test_wrong_token_keeps_subscription(self):
        channel = make_channel()
        channel.expect(1)
        assert channel.consume(1, "report_closed") == AcknowledgmentChannel.WRONG_TOKEN
        assert channel.pending(1) is not None

    def test_unknown_count(self):
        channel = make_channel()
        assert channel.consume(7, "inventory_printed") == AcknowledgmentChannel.NOT_AWAITED

    def test_expired(self):
        channel = make_channel(timeout=timedelta(minutes=5))
        channel.expect(1)
        later = datetime.now(timezone.utc) + timedelta(minutes=6)
        assert channel.consume(1, "inventory_printed", now=later) == AcknowledgmentChannel.EXPIRED
        assert channel.pending(1) is None

    def test_concurrent_deliveries_accept_exactly_one(self):
        channel = make_channel()
        channel.expect(1)
        outcomes = []
        barrier = threading.Barrier(8)

        def deliver():
            barrier.wait()
            outcomes.append(channel.consume(1, "inventory_printed"))

        threads = [threading.Thread(target=deliver) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count(AcknowledgmentChannel.ACCEPTED) == 1
        assert outcomes.count(AcknowledgmentChannel.NOT_AWAITED) == 7


class TestLifecycle:

    def test_restore_after_failed_close(self):
        channel = make_channel()
        subscription = channel.expect(1)
        channel.consume(1, "inventory_printed")
        channel.restore(subscription)
        assert not subscription.fired.is_set()
        assert channel.consume(1, "inventory_printed") == AcknowledgmentChannel.ACCEPTED

    def test_cancel(self):
        channel = make_channel()
        channel.expect(1)
        channel.cancel(1)
        assert channel.pending(1) is None

    def test_purge_expired(self):
        channel = make_channel(timeout=timedelta(minutes=5))
        channel.expect(1)
        channel.expect(2, deadline=datetime.now(timezone.utc) + timedelta(hours=2))
        later = datetime.now(timezone.utc) + timedelta(minutes=10)
        assert channel.purge_expired(later) == 1
        assert channel.pending(1) is None
        assert channel.pending(2) is not None

    def test_expect_evicts_expired_subscriptions(self):
        channel = make_channel()
        channel.expect(1, deadline=datetime.now(timezone.utc) - timedelta(seconds=1))
        channel.expect(2)
        assert channel.pending(1) is None
        assert channel.pending(2) is not None
        assert len(channel) == 1

    def test_consume_evicts_other_expired_subscriptions(self):
        channel = make_channel(timeout=timedelta(minutes=5))
        channel.expect(1)
        channel.expect(2, deadline=datetime.now(timezone.utc) + timedelta(hours=2))
        later = datetime.now(timezone.utc) + timedelta(minutes=10)
        assert channel.consume(2, "inventory_printed", now=later) == AcknowledgmentChannel.ACCEPTED
        assert len(channel) == 0


class TestWait:

    def test_wait_returns_when_acknowledged(self):
        channel = make_channel()
        channel.expect(1)
        timer = threading.Timer(0.05, channel.consume, args=(1, "inventory_printed"))
        timer.start()
        try:
            assert channel.wait(1, timeout=5) is True
        finally:
            timer.cancel()

    def test_wait_times_out(self):
        channel = make_channel()
        channel.expect(1)
        assert channel.wait(1, timeout=0.01) is False

    def test_wait_on_unknown_count(self):
        assert make_channel().wait(3, timeout=0.01) is False
