import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import sessionmaker

from . import persistence, reporting
from .exceptions import UpstreamUnavailable
from .procore import ProcoreClient
from .schemas import InventoryRecord, InventoryReport, ProcoreSession
from .store import InventoryStore

logger = logging.getLogger(__name__)

CATEGORIES = [
    "Cable",
    "Connectors",
    "Devices",
    "Network Equipment",
    "Access Control",
    "Audio/Visual",
    "Security",
    "Telecommunications",
    "Fiber Optics",
    "Tools",
    "Mounting Hardware",
    "Conduit & Raceways",
    "Other",
]

SUB_CATEGORIES = {
    "Cable": ["Cat5e", "Cat6", "Cat6A", "Fiber", "Coaxial", "Speaker", "Security", "Fire Alarm"],
    "Connectors": ["RJ45", "F-Type", "BNC", "Fiber", "Terminal Blocks"],
    "Devices": ["WAPs", "Cameras", "Card Readers", "Speakers", "Sensors"],
}

UNIT_OPTIONS = ["Each", "Box", "Feet", "Meter", "Roll", "Pair", "Set", "Lot"]


class InventoryManager:
    """Inventory of one project: the record store plus its persistence.

    Procore is the primary copy; the local snapshot table is the fallback
    used whenever Procore cannot be reached.
    """

    def __init__(self, project_id: str, procore: ProcoreClient, session_factory: sessionmaker):
        self.project_id = project_id
        self.procore = procore
        self.session_factory = session_factory
        self.store = InventoryStore(project_id)
        self.loaded = False

    @property
    def items(self) -> List[InventoryRecord]:
        return self.store.all()

    async def load_inventory(self, session: ProcoreSession) -> List[InventoryRecord]:
        """Load the project's records from Procore or, failing that, local storage"""
        try:
            data = await self.procore.get_inventory(session, self.project_id)
            self.store.replace_all(InventoryRecord.model_validate(item) for item in data)
            logger.info(f"Loaded {len(self.store)} items from Procore for project {self.project_id}")
        except UpstreamUnavailable as e:
            logger.warning(f"Could not load inventory from API, checking local storage: {e}")
            with self.session_factory() as db:
                data = persistence.read_snapshot(db, self.project_id)
            if data is not None:
                self.store.replace_all(InventoryRecord.model_validate(item) for item in data)
                logger.info(f"Loaded {len(self.store)} items from local storage for project {self.project_id}")

        self.loaded = True
        return self.store.all()

    async def save_inventory(self, session: ProcoreSession) -> bool:
        """Save to Procore, and always to local storage as backup.

        An unreachable Procore is only logged; AuthenticationFailed still
        propagates once the local copy is written.
        """
        items = self.store.to_json()
        try:
            await self.procore.put_inventory(session, self.project_id, items)
        except UpstreamUnavailable as e:
            logger.warning(f"Could not save inventory to API, saving to local storage: {e}")
        finally:
            with self.session_factory() as db:
                persistence.write_snapshot(db, self.project_id, items)
        return True

    def add_item(self, item_data: Mapping[str, Any]) -> InventoryRecord:
        return self.store.add(item_data)

    def get_item(self, item_id: str) -> InventoryRecord:
        return self.store.get(item_id)

    def update_item(self, item_id: str, updates: Mapping[str, Any]) -> InventoryRecord:
        return self.store.update(item_id, updates)

    def delete_item(self, item_id: str) -> bool:
        self.store.delete(item_id)
        return True

    def adjust_quantity(self, item_id: str, quantity_change: float, is_allocation: bool = False) -> InventoryRecord:
        return self.store.adjust_quantity(item_id, quantity_change, is_allocation)

    def get_items_needing_reorder(self) -> List[InventoryRecord]:
        return self.store.needing_reorder()

    def search_items(self, criteria: Optional[Mapping[str, Any]] = None) -> List[InventoryRecord]:
        return self.store.search(criteria)

    def quick_search(self, term: str) -> List[InventoryRecord]:
        return self.store.quick_search(term)

    def generate_inventory_report(self, filters: Optional[Mapping[str, Any]] = None) -> InventoryReport:
        return reporting.generate_inventory_report(self.store.all(), filters)

    def export_to_csv(self) -> str:
        return reporting.export_to_csv(self.store.all())


class InventoryRegistry:
    """One inventory manager and one lock per project.

    Entries are never evicted: one manager and one lock stay in memory for
    every project id requested since startup.
    """

    def __init__(self, procore: ProcoreClient, session_factory: sessionmaker):
        self.procore = procore
        self.session_factory = session_factory
        self._managers: Dict[str, InventoryManager] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock(self, project_id: str) -> asyncio.Lock:
        """Serializes syncs and edits of one project"""
        if project_id not in self._locks:
            self._locks[project_id] = asyncio.Lock()
        return self._locks[project_id]

    def get(self, project_id: str) -> InventoryManager:
        if project_id not in self._managers:
            self._managers[project_id] = InventoryManager(project_id, self.procore, self.session_factory)
        return self._managers[project_id]

    async def open(self, project_id: str, session: ProcoreSession) -> InventoryManager:
        """Manager of a project, loaded on first use"""
        manager = self.get(project_id)
        if not manager.loaded:
            await manager.load_inventory(session)
        return manager
