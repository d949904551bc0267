"""Arm Registry — the catalog of movement strategies.

An arm is a named, fixed set of path-cost knobs handed to the movement
actuator. The catalog is configuration: it is loaded once at startup
(built-in or from a JSON file), seeded into the database, and read
thereafter.
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite
import orjson
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from botbrain.exceptions import ArmCatalogError

_logger = logging.getLogger(__name__)


def _bound(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class MovementParams(BaseModel):
    """Path-cost configuration for the movement actuator."""

    model_config = ConfigDict(frozen=True)

    can_open_doors: bool = True
    allow_1by1_towers: bool = True
    max_drop_down: float = 3
    dig_cost: float = 4
    place_cost: float = 4
    water_cost: float = 12
    lava_cost: float = 100

    def clamped(self) -> MovementParams:
        """Copy with every numeric knob bounded to what the actuator accepts."""
        return self.model_copy(update={
            "max_drop_down": _bound(self.max_drop_down, 0, 10),
            "dig_cost": _bound(self.dig_cost, 1, 20),
            "place_cost": _bound(self.place_cost, 1, 20),
            "water_cost": _bound(self.water_cost, 1, 100),
            "lava_cost": _bound(self.lava_cost, 1, 100),
        })


class MovementArm(BaseModel):
    """One catalog entry. `id` is assigned by the database on seeding."""

    model_config = ConfigDict(frozen=True)

    id: int = 0
    name: str
    params: MovementParams = MovementParams()


class ArmCatalog(BaseModel):
    """A versioned set of arms with unique names."""

    version: int = 1
    arms: list[MovementArm]

    @field_validator("arms")
    @classmethod
    def _unique_names(cls, arms: list[MovementArm]) -> list[MovementArm]:
        names = [a.name for a in arms]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"duplicate arm names: {', '.join(dupes)}")
        if not arms:
            raise ValueError("catalog has no arms")
        return arms


DEFAULT_CATALOG = ArmCatalog(
    version=1,
    arms=[
        MovementArm(name="conservative", params=MovementParams(
            can_open_doors=True, allow_1by1_towers=False, max_drop_down=2,
            dig_cost=6, place_cost=6, water_cost=20, lava_cost=100,
        )),
        MovementArm(name="balanced", params=MovementParams(
            can_open_doors=True, allow_1by1_towers=True, max_drop_down=3,
            dig_cost=4, place_cost=4, water_cost=12, lava_cost=100,
        )),
        MovementArm(name="aggressive", params=MovementParams(
            can_open_doors=True, allow_1by1_towers=True, max_drop_down=4,
            dig_cost=2, place_cost=2, water_cost=8, lava_cost=100,
        )),
        MovementArm(name="scout", params=MovementParams(
            can_open_doors=True, allow_1by1_towers=False, max_drop_down=5,
            dig_cost=5, place_cost=3, water_cost=10, lava_cost=100,
        )),
    ],
)


def load_catalog(path: str | Path) -> ArmCatalog:
    """Read an arm catalog from a JSON file."""
    try:
        data = orjson.loads(Path(path).read_bytes())
        return ArmCatalog.model_validate(data)
    except (OSError, orjson.JSONDecodeError, ValidationError) as e:
        raise ArmCatalogError(f"Cannot load arm catalog from {path}: {e}") from e


class ArmRegistry:
    """Database-backed arm catalog, cached after the first read."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._arms: list[MovementArm] | None = None

    async def seed(self, catalog: ArmCatalog = DEFAULT_CATALOG) -> int:
        """Insert catalog arms that are not yet present. Returns rows inserted.

        Arms already seeded under the same name are left untouched.
        """
        inserted = 0
        async with aiosqlite.connect(self._db_path) as db:
            for arm in catalog.arms:
                cursor = await db.execute(
                    "INSERT OR IGNORE INTO movement_arms "
                    "(name, params_json, catalog_version) VALUES (?, ?, ?)",
                    (arm.name, orjson.dumps(arm.params.model_dump()).decode(), catalog.version),
                )
                inserted += cursor.rowcount
            await db.commit()
        self._arms = None
        if inserted:
            _logger.info("Seeded %d movement arms (catalog v%d)", inserted, catalog.version)
        return inserted

    async def list_arms(self) -> list[MovementArm]:
        """All arms, ascending by id."""
        if self._arms is None:
            arms = []
            async with aiosqlite.connect(self._db_path) as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(
                    "SELECT id, name, params_json FROM movement_arms ORDER BY id"
                ) as cursor:
                    async for row in cursor:
                        arms.append(MovementArm(
                            id=row["id"],
                            name=row["name"],
                            params=MovementParams(**orjson.loads(row["params_json"])),
                        ))
            self._arms = arms
        return list(self._arms)

    async def get(self, name: str) -> MovementArm | None:
        for arm in await self.list_arms():
            if arm.name == name:
                return arm
        return None

    async def get_by_id(self, arm_id: int) -> MovementArm | None:
        for arm in await self.list_arms():
            if arm.id == arm_id:
                return arm
        return None

    async def names(self) -> list[str]:
        return [a.name for a in await self.list_arms()]
