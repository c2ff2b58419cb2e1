import random
from collections import Counter
from types import SimpleNamespace

import pytest

from chainraffle.utils.selection import entry_weights, pick_winning_entry, win_probabilities


def make_entries(*quantities):
    return [SimpleNamespace(id=f"e{i}", quantity=q) for i, q in enumerate(quantities)]


def test_uniform_selection_frequencies():
    entries = make_entries(1, 5, 20)
    rng = random.Random(2024)
    counts = Counter(pick_winning_entry(entries, rng).id for _ in range(6000))

    # Количество билетов не влияет на шанс в режиме entry
    for entry in entries:
        assert 1700 < counts[entry.id] < 2300


def test_ticket_weighted_frequencies():
    entries = make_entries(1, 5)
    rng = random.Random(99)
    counts = Counter(pick_winning_entry(entries, rng, "ticket").id for _ in range(6000))

    assert 800 < counts["e0"] < 1200
    assert 4800 < counts["e1"] < 5200


def test_ticket_boundaries_map_to_owner():
    entries = make_entries(2, 3)

    class FixedRng:
        def __init__(self, value):
            self.value = value

        def randrange(self, stop):
            assert stop == 5
            return self.value

    picked = [pick_winning_entry(entries, FixedRng(n), "ticket").id for n in range(5)]
    assert picked == ["e0", "e0", "e1", "e1", "e1"]


def test_single_entry_always_wins():
    entries = make_entries(3)
    assert pick_winning_entry(entries, random.Random(1)) is entries[0]
    assert pick_winning_entry(entries, random.Random(1), "ticket") is entries[0]


def test_empty_entries_rejected():
    with pytest.raises(ValueError):
        pick_winning_entry([], random.Random(1))


def test_unknown_weighting_rejected():
    with pytest.raises(ValueError):
        entry_weights(make_entries(1), "stake")


def test_win_probabilities():
    entries = make_entries(1, 3)
    assert win_probabilities(entries) == {"e0": 0.5, "e1": 0.5}
    assert win_probabilities(entries, "ticket") == {"e0": 0.25, "e1": 0.75}
    assert win_probabilities([]) == {}
