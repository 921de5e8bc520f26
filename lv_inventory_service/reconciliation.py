"""
Sync inventory with Procore purchase orders and RFIs.

Only low voltage purchase orders are considered, picked by keyword from the
title or description. Approved and Closed orders add their outstanding
quantity to matching records or create new records; orders in any other
status are left alone until they are approved.
"""

import logging
import math
import re
from typing import Any, Dict, List

from .exceptions import AuthenticationFailed, UpstreamUnavailable
from .inventory import InventoryManager
from .procore import ProcoreClient
from .schemas import InventoryRecord, ProcoreSession, ProductMention, PurchaseOrder, PurchaseOrderLineItem

logger = logging.getLogger(__name__)

LV_KEYWORDS = ("low voltage", "lv", "communications", "data", "telecom", "network", "cable")

RFI_KEYWORDS = ("low voltage", "communication", "data")

APPLIED_STATUSES = ("Approved", "Closed")

# Evaluated in order, first hit wins
CATEGORY_RULES = (
    (("cable", "wire"), "Cable"),
    (("connector", "terminal"), "Connectors"),
    (("camera", "sensor"), "Devices"),
    (("switch", "router", "access point"), "Network Equipment"),
    (("card reader", "door"), "Access Control"),
    (("speaker", "microphone", "projector"), "Audio/Visual"),
    (("alarm", "motion", "security"), "Security"),
    (("phone", "telecom"), "Telecommunications"),
    (("fiber",), "Fiber Optics"),
    (("tool",), "Tools"),
    (("bracket", "mount"), "Mounting Hardware"),
    (("conduit", "raceway", "tray"), "Conduit & Raceways"),
)

DEFAULT_CATEGORY = "Other"

PO_LOCATION = "From PO"

DEFAULT_REORDER_RATIO = 0.2

# Upper case and digit tokens joined by hyphens, with at least one digit: 2412-010-1000, CS-44
PART_NUMBER_PATTERN = re.compile(r"\b(?=[A-Z0-9-]*\d)[A-Z0-9]+(?:-[A-Z0-9]+)+\b")


def _mentions_any(keywords, *texts) -> bool:
    lowered = [text.lower() for text in texts if text]
    return any(keyword in text for keyword in keywords for text in lowered)


def is_low_voltage_po(po: PurchaseOrder) -> bool:
    return _mentions_any(LV_KEYWORDS, po.title, po.description)


def determine_category(description: str) -> str:
    desc = (description or "").lower()
    for keywords, category in CATEGORY_RULES:
        if any(keyword in desc for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def line_matches(record: InventoryRecord, line: PurchaseOrderLineItem) -> bool:
    """Same part number, or the record's description contains the line's"""
    if line.part_number and record.part_number == line.part_number:
        return True
    if not line.description:
        return False
    return line.description.lower() in record.description.lower()


def record_from_line(line: PurchaseOrderLineItem) -> Dict[str, Any]:
    """Fields of a new inventory item for an unmatched line item"""
    return {
        "category": determine_category(line.description),
        "sub_category": "",
        "manufacturer": line.manufacturer or "",
        "part_number": line.part_number or "",
        "description": line.description,
        "unit_of_measure": line.unit or "Each",
        "quantity_available": line.quantity,
        "quantity_allocated": 0,
        "reorder_threshold": math.floor(line.quantity * DEFAULT_REORDER_RATIO),
        "reorder_quantity": line.quantity,
        "location": PO_LOCATION,
        "cost": line.unit_cost or 0,
    }


def extract_product_info(rfi_id: str, text: str) -> ProductMention:
    part_numbers = list(dict.fromkeys(PART_NUMBER_PATTERN.findall(text)))
    return ProductMention(rfi_id=rfi_id, excerpt=text[:100], part_numbers=part_numbers)


class ProcoreSyncManager:
    """Applies Procore purchase order data to a project's inventory"""

    def __init__(self, procore: ProcoreClient):
        self.procore = procore

    def _apply_line_item(self, manager: InventoryManager, line: PurchaseOrderLineItem):
        """Apply one line item; returns the id of the touched record, if any"""
        matched = manager.store.find_first(lambda record: line_matches(record, line))

        if matched is None:
            record = manager.add_item(record_from_line(line))
            logger.info(f"Created item {record.id} from PO line {line.description!r}")
            return record.id

        quantity_change = line.quantity - (line.received_quantity or 0)
        if quantity_change > 0:
            manager.adjust_quantity(matched.id, quantity_change, is_allocation=False)
            logger.info(f"Added {quantity_change} to item {matched.id} from PO line {line.description!r}")
            return matched.id
        return None

    async def sync_with_purchase_orders(self, session: ProcoreSession, manager: InventoryManager) -> int:
        """Apply the project's purchase orders; returns the number of items touched.

        Saves the inventory once at the end if anything changed. A failed
        fetch aborts the run, keeping the changes already applied in memory.
        Line items are fetched only for Approved or Closed orders, so a
        Draft order whose line items cannot be fetched does not abort the run.
        """
        project_id = manager.project_id
        logger.info(f"Syncing purchase orders for project {project_id}")

        try:
            purchase_orders = await self.procore.get_purchase_orders(session, project_id)
            updated_items = set()

            for po in purchase_orders:
                if not is_low_voltage_po(po):
                    continue
                if po.status not in APPLIED_STATUSES:
                    logger.info(f"Skipping PO {po.id} with status {po.status}")
                    continue

                line_items = await self.procore.get_line_items(session, project_id, po.id)
                for line in line_items:
                    item_id = self._apply_line_item(manager, line)
                    if item_id is not None:
                        updated_items.add(item_id)
        except (UpstreamUnavailable, AuthenticationFailed) as e:
            logger.error(f"Error syncing with purchase orders for project {project_id}: {e}")
            raise

        if updated_items:
            await manager.save_inventory(session)

        logger.info(f"Purchase order sync for project {project_id} touched {len(updated_items)} items")
        return len(updated_items)

    async def sync_with_rfis(self, session: ProcoreSession, project_id: str) -> List[ProductMention]:
        """Collect product mentions from responses to low voltage RFIs"""
        try:
            rfis = await self.procore.get_rfis(session, project_id)
        except (UpstreamUnavailable, AuthenticationFailed) as e:
            logger.error(f"Error syncing with RFIs for project {project_id}: {e}")
            raise

        mentions = []
        for rfi in rfis:
            if not _mentions_any(RFI_KEYWORDS, rfi.subject, rfi.body):
                continue
            for response in rfi.responses:
                if not response.body:
                    continue
                mention = extract_product_info(rfi.id, response.body)
                logger.info(f"Extracted info from RFI {rfi.id}: {mention.excerpt}...")
                mentions.append(mention)

        return mentions
