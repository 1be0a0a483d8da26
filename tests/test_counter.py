import json

from siivi.counter import MESSAGE_COUNTER_KEY, MessageCounter


def test_prompt_fires_on_fifth_message_only(storage):
    counter = MessageCounter(storage)
    fired = [counter.increment() for _ in range(5)]

    assert fired == [False, False, False, False, True]
    assert counter.show_donation is True
    assert counter.state() == {"count": 5, "lastDonationShown": 5}
    assert json.loads(storage.get(MESSAGE_COUNTER_KEY)) == {"count": 5, "lastDonationShown": 5}


def test_prompt_fires_once_per_multiple_without_hide(storage):
    counter = MessageCounter(storage)
    fired_at = [n for n in range(1, 31) if counter.increment()]

    assert fired_at == [5, 10, 15, 20, 25, 30]
    assert counter.last_donation_shown == 30


def test_hide_only_clears_flag(storage):
    counter = MessageCounter(storage)
    for _ in range(5):
        counter.increment()
    counter.hide()

    assert counter.show_donation is False
    assert counter.state() == {"count": 5, "lastDonationShown": 5}


def test_same_multiple_does_not_fire_twice(storage):
    storage.set(MESSAGE_COUNTER_KEY, json.dumps({"count": 4, "lastDonationShown": 5}))
    counter = MessageCounter(storage)

    assert counter.increment() is False
    assert counter.show_donation is False
    assert counter.count == 5


def test_reset_zeroes_and_persists(storage):
    counter = MessageCounter(storage)
    for _ in range(7):
        counter.increment()
    counter.reset()

    assert counter.state() == {"count": 0, "lastDonationShown": 0}
    assert MessageCounter(storage).state() == {"count": 0, "lastDonationShown": 0}


def test_state_survives_restart(storage):
    first = MessageCounter(storage)
    for _ in range(3):
        first.increment()

    second = MessageCounter(storage)
    assert second.count == 3
    assert [second.increment(), second.increment()] == [False, True]


def test_corrupt_state_starts_from_zero(storage):
    storage.set(MESSAGE_COUNTER_KEY, "{not json")
    counter = MessageCounter(storage)

    assert counter.state() == {"count": 0, "lastDonationShown": 0}
    assert storage.get(MESSAGE_COUNTER_KEY) is None
