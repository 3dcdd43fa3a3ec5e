# config.py
import os
from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./hcs_booking.db")

# Token settings
SECRET_KEY = os.getenv("SECRET_KEY", "change-me-in-production")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 30))

# Capacity rules
DEFAULT_SLOTS_PER_DAY = int(os.getenv("DEFAULT_SLOTS_PER_DAY", 10))
MAX_SLOTS_PER_DAY = int(os.getenv("MAX_SLOTS_PER_DAY", 100))

# Listing
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", 50))

# Seeded superadmin
ADMIN_NAME = os.getenv("ADMIN_NAME", "Super Admin")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@hcs.local")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
