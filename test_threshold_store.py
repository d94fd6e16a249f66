"""
Threshold store tests
Bound validation, reset and concurrent updates from several writers
"""

import random
import threading

import pytest

from hsv_segmenter import Config, ThresholdRange, ThresholdStore


def assert_ordered(snapshot: ThresholdRange):
    assert snapshot.lower_h <= snapshot.upper_h
    assert snapshot.lower_s <= snapshot.upper_s
    assert snapshot.lower_v <= snapshot.upper_v


def test_defaults():
    store = ThresholdStore()
    t = store.snapshot()
    assert t.lower == (112, 100, 100)
    assert t.upper == (120, 255, 255)
    for channel in Config.CHANNELS:
        assert store.get_lower(channel) == Config.DEFAULT_LOWER[channel]
        assert store.get_upper(channel) == Config.DEFAULT_UPPER[channel]


def test_invalid_defaults_rejected():
    with pytest.raises(ValueError):
        ThresholdStore(lower={"H": 50, "S": 0, "V": 0}, upper={"H": 50, "S": 255, "V": 255})
    with pytest.raises(ValueError):
        ThresholdStore(lower={"H": 0, "S": 0, "V": 0}, upper={"H": 200, "S": 255, "V": 255})


def test_lower_must_stay_below_upper():
    store = ThresholdStore()
    assert store.set_lower("H", 119)
    assert store.get_lower("H") == 119

    assert not store.set_lower("H", 120)
    assert not store.set_lower("H", 150)
    assert store.get_lower("H") == 119


def test_upper_must_stay_above_lower():
    store = ThresholdStore()
    assert not store.set_upper("S", 100)
    assert not store.set_upper("S", 40)
    assert store.get_upper("S") == 255

    assert store.set_upper("S", 101)
    assert store.get_upper("S") == 101


def test_out_of_range_values_rejected():
    store = ThresholdStore()
    assert not store.set_lower("V", -1)
    assert not store.set_upper("H", 180)
    assert not store.set_upper("S", 256)
    assert store.snapshot() == ThresholdStore().snapshot()

    assert store.set_upper("H", 179)
    assert store.set_lower("S", 0)


def test_unknown_channel():
    store = ThresholdStore()
    with pytest.raises(KeyError):
        store.get_lower("X")
    with pytest.raises(KeyError):
        store.set_upper("hue", 10)


def test_channels_are_independent():
    store = ThresholdStore()
    assert store.set_lower("S", 200)
    t = store.snapshot()
    assert (t.lower_h, t.upper_h) == (112, 120)
    assert (t.lower_v, t.upper_v) == (100, 255)
    assert t.lower_s == 200


def test_reset_restores_defaults():
    store = ThresholdStore()
    store.set_upper("H", 170)
    store.set_lower("H", 10)
    store.set_lower("V", 0)
    store.reset()
    assert store.snapshot() == ThresholdStore().snapshot()


def test_snapshot_as_dict():
    t = ThresholdStore().snapshot()
    assert t.as_dict() == {
        'lower_h': 112, 'upper_h': 120,
        'lower_s': 100, 'upper_s': 255,
        'lower_v': 100, 'upper_v': 255,
    }


def test_random_update_sequence_keeps_order():
    store = ThresholdStore()
    rng = random.Random(1234)

    for _ in range(5000):
        channel = rng.choice(Config.CHANNELS)
        value = rng.randint(-10, 300)
        if rng.random() < 0.5:
            store.set_lower(channel, value)
        else:
            store.set_upper(channel, value)
        assert store.get_lower(channel) < store.get_upper(channel)

    assert_ordered(store.snapshot())


def test_concurrent_writers_keep_order():
    store = ThresholdStore()
    errors = []

    def writer(seed):
        rng = random.Random(seed)
        for _ in range(2000):
            channel = rng.choice(Config.CHANNELS)
            value = rng.randint(0, Config.CHANNEL_MAX[channel])
            if rng.random() < 0.5:
                store.set_lower(channel, value)
            else:
                store.set_upper(channel, value)

    def reader():
        for _ in range(2000):
            t = store.snapshot()
            if not (t.lower_h <= t.upper_h and t.lower_s <= t.upper_s and t.lower_v <= t.upper_v):
                errors.append(t)

    threads = [threading.Thread(target=writer, args=(seed,)) for seed in range(4)]
    threads.append(threading.Thread(target=reader))
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert_ordered(store.snapshot())


@pytest.mark.parametrize("run", range(5))
def test_alternating_writes_from_two_threads(run):
    store = ThresholdStore()
    store.set_lower("S", 0)

    def write(values):
        for i in range(1000):
            store.set_upper("S", values[i % 2])

    a = threading.Thread(target=write, args=((200, 210),))
    b = threading.Thread(target=write, args=((220, 230),))
    a.start()
    b.start()
    a.join()
    b.join()

    assert store.get_upper("S") in (200, 210, 220, 230)
    assert store.get_lower("S") == 0
