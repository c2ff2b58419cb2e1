from chainraffle.database.repositories.user_repository import UserRepository
from chainraffle.database.repositories.raffle_repository import RaffleRepository
from chainraffle.database.repositories.entry_repository import EntryRepository

__all__ = ["UserRepository", "RaffleRepository", "EntryRepository"]
