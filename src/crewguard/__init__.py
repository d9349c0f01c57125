"""CrewGuard: conflict detection and assignment validation for crew scheduling."""

__version__ = "0.1.0"

from crewguard.engine.service import ConflictEngine  # noqa: E402
from crewguard.errors import (  # noqa: E402
    CrewGuardError,
    InvalidInputError,
    NotFoundError,
    StoreUnavailableError,
)

__all__ = [
    "ConflictEngine",
    "CrewGuardError",
    "InvalidInputError",
    "NotFoundError",
    "StoreUnavailableError",
    "__version__",
]
