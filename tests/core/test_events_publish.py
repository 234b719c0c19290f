from core import metrics
from core.eventbus import EventBus
from core.events import (
    ChatClosed,
    ChatOpened,
    HistoryLoaded,
    MessageSendFailed,
    ToastShown,
    attach_metrics,
    publish,
)


def test_publish_uses_class_name_and_event_dict():
    bus = EventBus("test")
    got = []
    bus.subscribe("ToastShown", got.append)
    publish(
        bus,
        ToastShown(toast_id="t1", sender_id="A", sender_name="Al", text="hi"),
    )
    assert got[0]["toast_id"] == "t1"
    assert got[0]["text"] == "hi"
    assert isinstance(got[0]["ts"], float)


def test_publish_without_bus_is_noop():
    publish(None, ChatOpened(counterpart_id="A"))


def test_metrics_collector_counts_selected_events():
    bus = EventBus("test")
    sub = attach_metrics(bus)
    publish(bus, ChatOpened(counterpart_id="A"))
    publish(bus, ChatClosed(counterpart_id="A"))
    publish(bus, HistoryLoaded("A", from_cache=False, count=7))
    publish(bus, MessageSendFailed(error="x"))
    assert metrics.get("chat_windows_total", {"type": "opened"}) == 1
    assert metrics.get("chat_windows_total", {"type": "closed"}) == 1
    assert metrics.get("message_send_failed_events_total") == 1
    hist = metrics.snapshot()["histograms"]["history_size"]
    assert hist["count"] == 1 and hist["last"] == 7
    sub.dispose()
    publish(bus, ChatOpened(counterpart_id="B"))
    assert metrics.get("chat_windows_total", {"type": "opened"}) == 1
