"""Last-known state per entity, used to replay state on subscribe.

No history is kept: each update replaces the previous snapshot.
"""

from typing import Optional

from hassstream.schemas.hass import EntityState


class EntityStateCache:
    def __init__(self) -> None:
        self._states: dict[str, EntityState] = {}

    def update(self, entity: EntityState) -> None:
        self._states[entity.entity_id] = entity

    def get(self, entity_id: str) -> Optional[EntityState]:
        return self._states.get(entity_id)

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._states
