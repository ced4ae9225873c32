"""Item mapper: turn discovered openHAB items into sensors.

Each mapping creates a sensor and its mapping row inside one SAVEPOINT,
so either both exist afterwards or neither does.
"""

import logging

from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from twinsync.dal.mappings import SensorMappingRepository
from twinsync.dal.sensors import SensorRepository
from twinsync.exceptions import (
    DuplicateMappingError,
    MapError,
    MappingCreateFailedError,
    NotFoundError,
    SensorCreateFailedError,
)
from twinsync.openhab.models import ExternalItem
from twinsync.storage.entities import ConnectionConfig, SensorMapping
from twinsync.sync.classifier import classify

logger = logging.getLogger(__name__)

_DUPLICATE_CONSTRAINT = "uq_sensor_mapping_config_item"


class MapAllResult(BaseModel):
    """Aggregate outcome of a bulk mapping."""

    succeeded: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)
    mappings: list[str] = Field(default_factory=list, description="IDs of created mappings")


class ItemMapper:
    """Creates and maintains sensor mappings for one database session.

    The caller owns the transaction and commits when done.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.sensor_repo = SensorRepository(session)
        self.mapping_repo = SensorMappingRepository(session)

    async def map_one(
        self,
        config: ConnectionConfig,
        item: ExternalItem,
        twin_id: str | None = None,
    ) -> SensorMapping:
        """Create a sensor for the item and map the item onto it.

        Raises:
            DuplicateMappingError: The item is already mapped for this config.
            SensorCreateFailedError: The sensor insert failed.
            MappingCreateFailedError: The mapping insert failed.
        """
        if await self.mapping_repo.get_by_item(config.id, item.name) is not None:
            raise DuplicateMappingError(
                f"Item {item.name} is already mapped",
                item_name=item.name,
            )

        async with self.session.begin_nested():
            try:
                sensor = await self.sensor_repo.create(
                    {
                        "name": item.display_name,
                        "type": classify(item.declared_type),
                        "status": "online",
                        "twin_id": twin_id,
                    }
                )
            except SQLAlchemyError as e:
                raise SensorCreateFailedError(
                    f"Could not create sensor for {item.name}: {e}",
                    item_name=item.name,
                ) from e

            try:
                mapping = await self.mapping_repo.create(
                    {
                        "config_id": config.id,
                        "sensor_id": sensor.id,
                        "external_item_name": item.name,
                        "external_item_type": item.declared_type,
                        "external_item_label": item.label,
                        "sync_enabled": True,
                    }
                )
            except IntegrityError as e:
                if _DUPLICATE_CONSTRAINT in str(e.orig):
                    raise DuplicateMappingError(
                        f"Item {item.name} is already mapped",
                        item_name=item.name,
                    ) from e
                raise MappingCreateFailedError(
                    f"Could not create mapping for {item.name}: {e.orig}",
                    item_name=item.name,
                ) from e
            except SQLAlchemyError as e:
                raise MappingCreateFailedError(
                    f"Could not create mapping for {item.name}: {e}",
                    item_name=item.name,
                ) from e

        logger.info(
            "Mapped openHAB item %s (%s) to sensor %s as %s",
            item.name,
            item.declared_type,
            sensor.id,
            sensor.type,
        )
        return mapping

    async def map_all(
        self,
        config: ConnectionConfig,
        items: list[ExternalItem],
        twin_id: str | None = None,
    ) -> MapAllResult:
        """Map every item independently; failures are counted, not raised."""
        result = MapAllResult()
        for item in items:
            try:
                mapping = await self.map_one(config, item, twin_id=twin_id)
            except MapError as e:
                result.failed += 1
                result.errors.append(f"{item.name}: {e}")
                logger.warning("Mapping openHAB item %s failed: %s", item.name, e)
                continue
            result.succeeded += 1
            result.mappings.append(mapping.id)

        logger.info(
            "Bulk mapping for config %s: %d succeeded, %d failed",
            config.id,
            result.succeeded,
            result.failed,
        )
        return result

    async def list_mappings(self, config: ConnectionConfig) -> list[SensorMapping]:
        return await self.mapping_repo.list_for_config(config.id)

    async def set_sync_enabled(
        self,
        config: ConnectionConfig,
        mapping_id: str,
        enabled: bool,
    ) -> SensorMapping:
        """Include or exclude a mapping from future syncs.

        Raises:
            NotFoundError: If the mapping does not belong to the config.
        """
        mapping = await self.mapping_repo.get_by_id(mapping_id)
        if mapping is None or mapping.config_id != config.id:
            raise NotFoundError(f"Mapping {mapping_id} not found")
        return await self.mapping_repo.set_sync_enabled(mapping, enabled)


__all__ = ["ItemMapper", "MapAllResult"]
