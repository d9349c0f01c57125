from crewguard.store.base import AssignmentStore
from crewguard.store.memory import InMemoryAssignmentStore

__all__ = ["AssignmentStore", "InMemoryAssignmentStore"]
