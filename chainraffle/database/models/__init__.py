from chainraffle.database.models.user import User
from chainraffle.database.models.raffle import Raffle, RAFFLE_STATUSES
from chainraffle.database.models.raffle_entry import RaffleEntry

__all__ = ["User", "Raffle", "RaffleEntry", "RAFFLE_STATUSES"]
