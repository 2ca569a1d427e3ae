from masterdom_chat.notify import Subscribers


def test_broadcast_reaches_every_listener_despite_failures():
    hub = Subscribers("test")
    seen = []

    def broken(_value):
        raise RuntimeError("boom")

    hub.subscribe(broken)
    hub.subscribe(seen.append)
    hub.broadcast(1)

    assert seen == [1]


def test_unsubscribe_stops_delivery():
    hub = Subscribers("test")
    seen = []
    subscription = hub.subscribe(seen.append)

    hub.broadcast("a")
    hub.unsubscribe(subscription)
    hub.unsubscribe(subscription)
    hub.broadcast("b")

    assert seen == ["a"]
    assert len(hub) == 0
