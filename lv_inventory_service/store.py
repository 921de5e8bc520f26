import logging
import uuid
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from pydantic.alias_generators import to_camel

from .allocation import AdjustmentMode, adjust
from .exceptions import NotFound
from .schemas import InventoryRecord, utcnow

logger = logging.getLogger(__name__)

# Accept both snake_case and camelCase field names in search criteria
SEARCHABLE_FIELDS = {
    **{name: name for name in InventoryRecord.model_fields},
    **{to_camel(name): name for name in InventoryRecord.model_fields},
    "total_quantity": "total_quantity",
    "totalQuantity": "total_quantity",
}

QUICK_SEARCH_FIELDS = ("category", "sub_category", "manufacturer", "part_number", "description", "location")


def matches_criteria(record: InventoryRecord, criteria: Mapping[str, Any]) -> bool:
    """True when every criterion is a case-insensitive substring of its field.

    Empty or zero field values never match, neither do unknown fields.
    """
    for key, value in criteria.items():
        field = SEARCHABLE_FIELDS.get(key)
        field_value = getattr(record, field) if field else None
        if not field_value or str(value).lower() not in str(field_value).lower():
            return False
    return True


def matches_term(record: InventoryRecord, term: str) -> bool:
    """True when any of the descriptive fields contains the term"""
    term = term.lower()
    return any(term in getattr(record, field).lower() for field in QUICK_SEARCH_FIELDS)


class InventoryStore:
    """In-memory inventory records of one project, kept in insertion order.

    Records never leave the store by reference: accessors hand out copies and
    every change goes through a store operation.
    """

    def __init__(self, project_id: str, records: Iterable[InventoryRecord] = ()):
        self.project_id = project_id
        self._records: Dict[str, InventoryRecord] = {}
        self.replace_all(records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._records

    def _get(self, item_id: str) -> InventoryRecord:
        record = self._records.get(item_id)
        if record is None:
            logger.warning(f"Item {item_id} not found in project {self.project_id}")
            raise NotFound(item_id)
        return record

    def get(self, item_id: str) -> InventoryRecord:
        return self._get(item_id).model_copy(deep=True)

    def all(self) -> List[InventoryRecord]:
        return [record.model_copy(deep=True) for record in self._records.values()]

    def replace_all(self, records: Iterable[InventoryRecord]) -> None:
        """Replace every record; missing or repeated ids get a fresh one"""
        self._records = {}
        for record in records:
            if record.id is None or record.id in self._records:
                if record.id is not None:
                    logger.warning(f"Duplicate item id {record.id} in project {self.project_id}, assigning a new id")
                record = record.model_copy(update={"id": uuid.uuid4().hex})
            self._records[record.id] = record

    def add(self, data: Mapping[str, Any]) -> InventoryRecord:
        """Create a record with a fresh id and timestamps"""
        now = utcnow()
        record = InventoryRecord(
            **{
                **dict(data),
                "id": uuid.uuid4().hex,
                "project_id": self.project_id,
                "created_at": now,
                "last_updated": now,
            }
        )
        self._records[record.id] = record
        logger.info(f"Added item {record.id} ({record.description!r}) to project {self.project_id}")
        return record.model_copy(deep=True)

    def update(self, item_id: str, updates: Mapping[str, Any]) -> InventoryRecord:
        """Merge field edits into a record; id and creation time are kept"""
        current = self._get(item_id)
        merged = {
            **current.model_dump(exclude={"total_quantity", "needs_reorder"}),
            **dict(updates),
            "id": current.id,
            "project_id": current.project_id,
            "created_at": current.created_at,
            "last_updated": utcnow(),
        }
        record = InventoryRecord(**merged)
        self._records[item_id] = record
        logger.info(f"Updated item {item_id} in project {self.project_id}")
        return record.model_copy(deep=True)

    def delete(self, item_id: str) -> None:
        self._get(item_id)
        del self._records[item_id]
        logger.info(f"Deleted item {item_id} from project {self.project_id}")

    def adjust_quantity(self, item_id: str, quantity_change: float, is_allocation: bool = False) -> InventoryRecord:
        record = self._get(item_id)
        mode = AdjustmentMode.allocation if is_allocation else AdjustmentMode.stock
        adjust(record, quantity_change, mode)
        return record.model_copy(deep=True)

    def find_first(self, predicate: Callable[[InventoryRecord], bool]) -> Optional[InventoryRecord]:
        """First record in insertion order satisfying the predicate"""
        for record in self._records.values():
            if predicate(record):
                return record.model_copy(deep=True)
        return None

    def search(self, criteria: Optional[Mapping[str, Any]] = None) -> List[InventoryRecord]:
        criteria = criteria or {}
        return [record.model_copy(deep=True) for record in self._records.values() if matches_criteria(record, criteria)]

    def quick_search(self, term: str) -> List[InventoryRecord]:
        if not term:
            return self.all()
        return [record.model_copy(deep=True) for record in self._records.values() if matches_term(record, term)]

    def needing_reorder(self) -> List[InventoryRecord]:
        return [record.model_copy(deep=True) for record in self._records.values() if record.needs_reorder]

    def to_json(self) -> List[Dict[str, Any]]:
        return [record.to_json() for record in self._records.values()]
