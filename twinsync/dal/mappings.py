"""Sensor mapping repository."""

from datetime import datetime

from sqlalchemy import select

from twinsync.dal.base import BaseRepository
from twinsync.storage.entities import SensorMapping


class SensorMappingRepository(BaseRepository[SensorMapping]):
    """CRUD for item -> sensor mappings."""

    model = SensorMapping
    order_by_field = "external_item_name"

    async def get_by_item(self, config_id: str, item_name: str) -> SensorMapping | None:
        result = await self.session.execute(
            select(SensorMapping).where(
                SensorMapping.config_id == config_id,
                SensorMapping.external_item_name == item_name,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_config(
        self,
        config_id: str,
        *,
        sync_enabled_only: bool = False,
    ) -> list[SensorMapping]:
        query = select(SensorMapping).where(SensorMapping.config_id == config_id)
        if sync_enabled_only:
            query = query.where(SensorMapping.sync_enabled.is_(True))
        result = await self.session.execute(query.order_by(SensorMapping.external_item_name))
        return list(result.scalars().all())

    async def mapped_item_names(self, config_id: str) -> set[str]:
        result = await self.session.execute(
            select(SensorMapping.external_item_name).where(SensorMapping.config_id == config_id)
        )
        return {row[0] for row in result.fetchall()}

    async def set_sync_enabled(self, mapping: SensorMapping, enabled: bool) -> SensorMapping:
        mapping.sync_enabled = enabled
        await self.session.flush()
        return mapping

    async def record_value(self, mapping: SensorMapping, raw_state: str, at: datetime) -> None:
        """Remember the raw state of the last successful sync."""
        mapping.last_value = raw_state
        mapping.last_synced_at = at
        await self.session.flush()
