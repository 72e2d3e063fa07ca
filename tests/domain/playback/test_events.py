"""Tests for player event dispatch."""

import threading
from unittest.mock import MagicMock

from greg.domain.playback.events import (
    ErrorEvent,
    EventDispatcher,
    PlaybackEndedEvent,
    ProgressEvent,
    Subscription,
)
from greg.domain.playback.models import PlaybackProgress


class TestCallbacks:
    """Tests for single-slot callbacks."""

    def test_progress_callback_receives_snapshot(self) -> None:
        """Test the progress slot is called with the snapshot."""
        events = EventDispatcher()
        callback = MagicMock()
        events.register("progress", callback)
        progress = PlaybackProgress(current_time=5.0, duration=10.0, percentage=50.0)

        events.emit(ProgressEvent(progress))

        callback.assert_called_once_with(progress)

    def test_last_registration_wins(self) -> None:
        """Test registering again replaces the previous callback."""
        events = EventDispatcher()
        first, second = MagicMock(), MagicMock()
        events.register("end", first)
        events.register("end", second)

        events.emit(PlaybackEndedEvent())

        first.assert_not_called()
        second.assert_called_once_with()

    def test_handle_only_clears_its_own_slot(self) -> None:
        """Test a stale handle cannot remove a newer callback."""
        events = EventDispatcher()
        first, second = MagicMock(), MagicMock()
        old_handle = events.register("error", first)
        new_handle = events.register("error", second)

        assert old_handle.cancel() is False
        events.emit(ErrorEvent(RuntimeError("boom")))
        second.assert_called_once()

        assert new_handle.cancel() is True
        events.emit(ErrorEvent(RuntimeError("again")))
        assert second.call_count == 1

    def test_callback_exception_is_contained(self) -> None:
        """Test a failing callback does not stop delivery."""
        events = EventDispatcher()
        events.register("progress", MagicMock(side_effect=ValueError("bad callback")))
        subscription = events.subscribe()

        events.emit(ProgressEvent(PlaybackProgress()))

        assert isinstance(subscription.get(timeout=1.0), ProgressEvent)

    def test_callback_may_reenter_dispatcher(self) -> None:
        """Test callbacks run without the dispatcher lock held."""
        events = EventDispatcher()
        done = threading.Event()

        def on_end() -> None:
            events.register("end", lambda: None)
            done.set()

        events.register("end", on_end)
        events.emit(PlaybackEndedEvent())

        assert done.is_set()


class TestSubscription:
    """Tests for the subscription channel."""

    def test_events_are_queued_in_order(self) -> None:
        """Test events arrive in emission order."""
        events = EventDispatcher()
        subscription = events.subscribe()
        error = RuntimeError("boom")

        events.emit(ProgressEvent(PlaybackProgress()))
        events.emit(ErrorEvent(error))
        events.emit(PlaybackEndedEvent())

        received = [subscription.get(timeout=1.0) for _ in range(3)]
        assert isinstance(received[0], ProgressEvent)
        assert received[1] == ErrorEvent(error)
        assert isinstance(received[2], PlaybackEndedEvent)

    def test_resubscribe_closes_previous(self) -> None:
        """Test only the newest subscription receives events."""
        events = EventDispatcher()
        old = events.subscribe()
        new = events.subscribe()

        events.emit(PlaybackEndedEvent())

        assert old.closed is True
        assert old.get(timeout=0.1) is None
        assert isinstance(new.get(timeout=1.0), PlaybackEndedEvent)

    def test_iteration_ends_when_closed_and_drained(self) -> None:
        """Test iterating stops after close once queued events are consumed."""
        subscription = Subscription()
        subscription.publish(PlaybackEndedEvent())
        subscription.close()

        assert list(subscription) == [PlaybackEndedEvent()]

    def test_closed_subscription_drops_events(self) -> None:
        """Test publishing to a closed subscription is ignored."""
        subscription = Subscription()
        subscription.close()

        assert subscription.publish(PlaybackEndedEvent()) is False

    def test_full_queue_drops_events(self) -> None:
        """Test a bounded subscription drops overflow instead of blocking."""
        subscription = Subscription(maxsize=1)

        assert subscription.publish(PlaybackEndedEvent()) is True
        assert subscription.publish(PlaybackEndedEvent()) is False

    def test_get_timeout(self) -> None:
        """Test get returns None when nothing arrives."""
        assert Subscription().get(timeout=0.05) is None

    def test_close_wakes_blocked_reader(self) -> None:
        """Test a reader waiting without a timeout returns once closed."""
        subscription = Subscription()
        results = []
        reader = threading.Thread(target=lambda: results.append(subscription.get()), daemon=True)
        reader.start()

        subscription.close()
        reader.join(timeout=1.0)

        assert not reader.is_alive()
        assert results == [None]
