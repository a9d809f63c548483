from .composer import MessageComposer
from .controller import SessionController
from .coordinator import DualGenerationCoordinator
from .room import RoomSession

__all__ = ["DualGenerationCoordinator", "MessageComposer", "RoomSession", "SessionController"]
