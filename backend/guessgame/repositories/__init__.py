"""Repository abstractions for database interactions."""

from .change_repository import ChangeRepository
from .guess_repository import GuessRepository
from .price_repository import PriceRepository
from .task_queue_repository import TaskQueueRepository
from .types import GuessInput, GuessResolutionInput
from .user_repository import UserRepository

__all__ = [
    "ChangeRepository",
    "GuessRepository",
    "PriceRepository",
    "TaskQueueRepository",
    "UserRepository",
    "GuessInput",
    "GuessResolutionInput",
]
