import os

APP_NAME = "LV-Inventory-Tracker"
APP_VERSION = "1.0.0"

# Local fallback storage
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./lv_inventory.db")

# Procore API
PROCORE_API_BASE_URL = os.getenv("PROCORE_API_BASE_URL", "https://api.procore.com/rest/v1.0")
PROCORE_CLIENT_ID = os.getenv("PROCORE_CLIENT_ID", "")
PROCORE_CLIENT_SECRET = os.getenv("PROCORE_CLIENT_SECRET", "")
PROCORE_REDIRECT_URI = os.getenv("PROCORE_REDIRECT_URI", "http://localhost:8000/auth/callback")
PROCORE_TIMEOUT = float(os.getenv("PROCORE_TIMEOUT", "30.0"))
PROCORE_SESSION_KEY = os.getenv("PROCORE_SESSION_KEY", "default")

# Seconds, used when the token response omits expires_in
DEFAULT_TOKEN_EXPIRES_IN = 7200

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
