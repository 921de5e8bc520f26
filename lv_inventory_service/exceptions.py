class InventoryError(Exception):
    """Base class for inventory service errors"""


class NotFound(InventoryError):
    """An item id did not resolve to a record"""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item with ID {item_id} not found")


class InsufficientStock(InventoryError):
    """An allocation change exceeds the quantity it draws from"""


class UpstreamUnavailable(InventoryError):
    """A Procore API call failed"""

    def __init__(self, message: str, status_code=None):
        self.status_code = status_code
        super().__init__(message)


class AuthenticationFailed(InventoryError):
    """No usable Procore token; the user has to log in again"""
