import logging
import random
from bisect import bisect_right
from itertools import accumulate
from typing import Dict, Sequence

from chainraffle.database.models import RaffleEntry

WEIGHTINGS = ("entry", "ticket")


def entry_weights(entries: Sequence[RaffleEntry], weighting: str) -> list:
    """
    Веса записей при выборе победителя.

    Args:
        entries (Sequence[RaffleEntry]): Записи участия
        weighting (str): entry - у каждой записи равный вес, ticket - вес равен количеству билетов

    Returns:
        list: Вес каждой записи в том же порядке
    """
    if weighting not in WEIGHTINGS:
        raise ValueError(f"Неизвестный способ взвешивания: {weighting}")
    if weighting == "ticket":
        return [max(int(entry.quantity or 1), 1) for entry in entries]
    return [1] * len(entries)


def pick_winning_entry(entries: Sequence[RaffleEntry], rng: random.Random, weighting: str = "entry") -> RaffleEntry:
    """
    Выбирает выигравшую запись.

    В режиме entry индекс берется равномерно из [0, n). В режиме ticket билеты
    записей выстраиваются подряд (запись с 5 билетами занимает 5 номеров),
    случайный номер билета ищется бинарным поиском по накопленным суммам.

    Args:
        entries (Sequence[RaffleEntry]): Записи участия, порядок должен быть детерминированным
        rng (random.Random): Источник случайности
        weighting (str): Способ взвешивания

    Returns:
        RaffleEntry: Выигравшая запись
    """
    if not entries:
        raise ValueError("Нельзя выбрать победителя без участников")

    weights = entry_weights(entries, weighting)

    if weighting == "entry":
        index = rng.randrange(len(entries))
    else:
        cumulative = list(accumulate(weights))
        winning_ticket = rng.randrange(cumulative[-1])  # номер билета от 0
        index = bisect_right(cumulative, winning_ticket)

    logging.debug(f"Выбрана запись #{index} из {len(entries)} (режим {weighting}, всего весов {sum(weights)})")
    return entries[index]


def win_probabilities(entries: Sequence[RaffleEntry], weighting: str = "entry") -> Dict[str, float]:
    """
    Вероятность выигрыша каждой записи (ключ - id записи, значение от 0.0 до 1.0)
    """
    if not entries:
        return {}
    weights = entry_weights(entries, weighting)
    total = sum(weights)
    return {str(entry.id): weight / total for entry, weight in zip(entries, weights)}
