"""Unit tests for regmigrate/utils/progress.py and regmigrate/utils/cancel.py"""

import threading

import pytest

from regmigrate.errors import Cancelled
from regmigrate.utils.cancel import CancelToken, check_cancelled
from regmigrate.utils.progress import ProgressChannel, ProgressReporter, TransferProgress, Update


class TestProgressChannel:
    """Tests for ProgressChannel"""

    def test_close_once(self):
        channel = ProgressChannel()
        assert channel.close() is True
        assert channel.close() is False
        assert channel.closed

    def test_updates_after_close_dropped(self):
        channel = ProgressChannel()
        channel.send(Update(10, 5))
        channel.close()
        channel.send(Update(10, 10))
        assert list(channel) == [Update(10, 5)]

    def test_consumer_in_other_thread(self):
        channel = ProgressChannel()
        received = []
        consumer = threading.Thread(target=lambda: received.extend(channel))
        consumer.start()

        for complete in range(1, 4):
            channel.send(Update(3, complete))
        channel.close()
        consumer.join(timeout=5)

        assert not consumer.is_alive()
        assert [update.complete for update in received] == [1, 2, 3]

    def test_concurrent_close(self):
        channel = ProgressChannel()
        results = []
        threads = [threading.Thread(target=lambda: results.append(channel.close())) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert results.count(True) == 1


class TestTransferProgress:
    """Tests for TransferProgress"""

    def test_consume_tracks_last_update(self):
        channel = ProgressChannel()
        channel.send(Update(100, 40))
        channel.send(Update(100, 100))
        channel.close()

        with TransferProgress("app:1.0", disable=True) as progress:
            progress.consume(channel)

        assert progress.last_update == Update(100, 100)

    def test_bar_follows_cumulative_updates(self):
        progress = TransferProgress("app:1.0", disable=True)
        progress.start()
        progress.update(Update(100, 30))
        progress.update(Update(100, 70))
        assert progress.progress_bar.total == 100
        assert progress.last_update == Update(100, 70)
        progress.finish()


class TestProgressReporter:
    """Tests for ProgressReporter"""

    def test_counts(self):
        with ProgressReporter(3, disable=True) as reporter:
            reporter.update(True)
            reporter.update(False)
            reporter.update(True)
        assert reporter.processed == 2
        assert reporter.errors == 1


class TestCancelToken:
    """Tests for CancelToken"""

    def test_cancel(self):
        token = CancelToken()
        token.raise_if_cancelled()
        token.cancel("stop")
        assert token.cancelled
        with pytest.raises(Cancelled, match="stop"):
            token.raise_if_cancelled()

    def test_check_cancelled_without_token(self):
        check_cancelled(None)
