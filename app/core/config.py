import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # DATABASE
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./homease.db")

    # AUTH (tokens are issued by the identity provider, we only verify them)
    JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

    # GEOCODING
    GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY")
    GEOCODING_URL = os.getenv("GEOCODING_URL", "https://maps.googleapis.com/maps/api/geocode/json")
    GEOCODING_TIMEOUT_SECONDS = float(os.getenv("GEOCODING_TIMEOUT_SECONDS", "5"))

    # MARKETPLACE
    DEFAULT_LEAD_PRICE = os.getenv("DEFAULT_LEAD_PRICE", "50.00")
    LOCK_DURATION_MINUTES = int(os.getenv("LOCK_DURATION_MINUTES", "10"))
    LOCK_SWEEP_INTERVAL_MINUTES = int(os.getenv("LOCK_SWEEP_INTERVAL_MINUTES", "1"))
    PAYMENTS_MOCK_MODE = _env_bool("PAYMENTS_MOCK_MODE", "true")  # Live mode = purchases finalized by the payment processor
    PROPOSAL_VALIDITY_DAYS = int(os.getenv("PROPOSAL_VALIDITY_DAYS", "30"))

    # MATCHING
    MATCH_RESULT_LIMIT = int(os.getenv("MATCH_RESULT_LIMIT", "10"))
    DEFAULT_SERVICE_RADIUS_MILES = float(os.getenv("DEFAULT_SERVICE_RADIUS_MILES", "25"))
    DEFAULT_URGENCY = "medium"
    DEFAULT_BUDGET_RANGE = "$5k-$10k"

    # RUNTIME
    SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", "true")
    CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",") if o.strip()]

settings = Settings()
