from jobtriage.domain import RunSummary
from jobtriage.events import EventBus, RunCompleted


def test_listeners_run_in_subscription_order():
    bus = EventBus()
    calls = []
    bus.subscribe(lambda e: calls.append("first"))
    bus.subscribe(lambda e: calls.append("second"))
    bus.subscribe(lambda e: calls.append("third"))

    bus.publish(object())

    assert calls == ["first", "second", "third"]


def test_failing_listener_does_not_stop_others():
    bus = EventBus()
    calls = []

    def broken(event):
        raise RuntimeError("listener bug")

    bus.subscribe(broken)
    bus.subscribe(calls.append)

    failures = bus.publish("event")

    assert failures == 1
    assert calls == ["event"]


def test_type_filter():
    bus = EventBus()
    seen = []
    bus.subscribe(seen.append, RunCompleted)
    bus.publish("not a run")
    event = RunCompleted(summary=RunSummary())
    bus.publish(event)
    assert seen == [event]


def test_unsubscribe():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(seen.append)
    bus.publish(1)
    unsubscribe()
    bus.publish(2)
    assert seen == [1]
