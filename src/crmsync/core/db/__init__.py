from .migrations import apply_migrations, connect_db
from .repository import CrmRepository, from_iso, to_iso

__all__ = ["connect_db", "apply_migrations", "CrmRepository", "to_iso", "from_iso"]
