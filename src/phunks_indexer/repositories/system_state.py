"""SystemState repository.

Provides data access methods for the SystemState key-value store.
"""

from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from phunks_indexer.core.timezone import utcnow
from phunks_indexer.models.system_state import SystemState


class SystemStateRepository:
    """Repository for SystemState key-value store.

    State values are stored as JSON and automatically serialized/deserialized.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_state(self, key: str) -> Any | None:
        """Retrieve state value for a key.

        Args:
            key: State key (e.g., "follower_l1")

        Returns:
            Deserialized state value if found, None otherwise
        """
        state = await self.session.get(SystemState, key)
        return state.state_value if state else None

    async def set_state(self, key: str, value: Any) -> None:
        """Set state value for a key (insert or update).

        Args:
            key: State key (alphanumeric + underscores only)
            value: State value (must be JSON-serializable)
        """
        state = await self.session.get(SystemState, key)
        if state is None:
            state = SystemState.model_validate({"key": key, "state_value": value})
            self.session.add(state)
        else:
            state.state_value = value
            state.updated_at = utcnow()
        await self.session.flush()

    async def delete_state(self, key: str) -> bool:
        """Delete state entry for a key (idempotent).

        Returns:
            True if key was deleted, False if key did not exist
        """
        result = await self.session.execute(delete(SystemState).where(SystemState.key == key))  # type: ignore[arg-type]
        await self.session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def list_all_keys(self) -> list[str]:
        """Retrieve all state keys."""
        result = await self.session.execute(select(SystemState.key))  # type: ignore[arg-type]
        return list(result.scalars().all())
