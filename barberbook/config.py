import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+psycopg://localhost:5432/barberbook")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Square Configuration
SQUARE_ENVIRONMENT = os.getenv("SQUARE_ENVIRONMENT", "sandbox")  # sandbox or production
SQUARE_ACCESS_TOKEN = os.getenv("SQUARE_ACCESS_TOKEN")
SQUARE_API_VERSION = os.getenv("SQUARE_API_VERSION", "2024-12-18")
SQUARE_TIMEOUT_SECONDS = float(os.getenv("SQUARE_TIMEOUT_SECONDS", "30"))
# Hard stop for availability pagination
SQUARE_MAX_AVAILABILITY_PAGES = int(os.getenv("SQUARE_MAX_AVAILABILITY_PAGES", "10"))

if SQUARE_ENVIRONMENT == "production":
    SQUARE_API_URL = "https://connect.squareup.com/v2"
else:
    SQUARE_API_URL = "https://connect.squareupsandbox.com/v2"

# Booking Configuration
BOOKING_CURRENCY = os.getenv("BOOKING_CURRENCY", "USD")
BOOKING_DEPOSIT_PERCENT = int(os.getenv("BOOKING_DEPOSIT_PERCENT", "25"))
BOOKING_DEPOSIT_MIN_CENTS = int(os.getenv("BOOKING_DEPOSIT_MIN_CENTS", "500"))
# Re-check the requested slot against Square before charging the card
BOOKING_VERIFY_SLOT = os.getenv("BOOKING_VERIFY_SLOT", "true").lower() == "true"

# CORS
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
