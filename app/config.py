"""
Application configuration with automatic environment detection
"""
import os
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()

class Settings:
    """Application settings with automatic environment detection"""

    # Environment detection
    ENV = os.getenv("ENV", "DEV").upper()
    IS_PRODUCTION = ENV == "PROD" or ENV == "PRODUCTION"
    IS_DEVELOPMENT = not IS_PRODUCTION

    # Server configuration
    HOST = os.getenv("HOST", "127.0.0.1")
    PORT = int(os.getenv("PORT", 8000))

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./returns.db")

    # CORS - Fully dynamic based on ALLOWED_ORIGINS environment variable
    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        """Get allowed CORS origins from FRONTEND_ORIGIN / ALLOWED_ORIGINS"""
        origins = []

        if self.IS_DEVELOPMENT:
            origins.extend([
                "http://localhost:3000",
                "http://127.0.0.1:3000",
            ])

        frontend = os.getenv("FRONTEND_ORIGIN", "").strip()
        if frontend:
            origins.append(frontend)

        env_origins = os.getenv("ALLOWED_ORIGINS", "")
        if env_origins:
            for origin in env_origins.split(","):
                origin = origin.strip()
                if origin:
                    origins.append(origin)

        # Remove duplicates while preserving order
        seen = set()
        unique_origins = []
        for origin in origins:
            if origin not in seen:
                seen.add(origin)
                unique_origins.append(origin)

        return unique_origins

    @property
    def CORS_ORIGIN_REGEX(self) -> Optional[str]:
        """Optional CORS origin regex; any localhost port in development"""
        regex = os.getenv("CORS_ORIGIN_REGEX", "")
        if regex:
            return regex
        if self.IS_DEVELOPMENT:
            return r"http://localhost:\d+|http://127\.0\.0\.1:\d+"
        return None

    # Ekart reverse logistics
    EKART_AUTH_URL = os.getenv("EKART_AUTH_URL", "")
    EKART_CREATE_URL = os.getenv("EKART_CREATE_URL", "")
    EKART_BASE_URL = os.getenv("EKART_BASE_URL", "")
    MERCHANT_CODE = os.getenv("MERCHANT_CODE", "")
    BASIC_AUTH = os.getenv("BASIC_AUTH", "")
    EKART_CLIENT_NAME = os.getenv("EKART_CLIENT_NAME", "") or MERCHANT_CODE or "IKK"
    EKART_RETURN_LOCATION_CODE = os.getenv("EKART_RETURN_LOCATION_CODE", "")
    EKART_TRACKING_PREFIX = os.getenv("EKART_TRACKING_PREFIX", "CLTC")
    EKART_SELLER_NAME = os.getenv("EKART_SELLER_NAME", "")
    EKART_TOKEN_TTL_SEC = int(os.getenv("EKART_TOKEN_TTL_SEC", 55 * 60))  # token lives 60 min upstream
    EKART_AUTH_TIMEOUT_SEC = float(os.getenv("EKART_AUTH_TIMEOUT_SEC", "15"))
    EKART_REQUEST_TIMEOUT_SEC = float(os.getenv("EKART_REQUEST_TIMEOUT_SEC", "30"))

    # Return destination used when neither the request nor the order carries one
    RETURN_DEST_NAME = os.getenv("RETURN_DEST_NAME", "Returns Desk")
    RETURN_DEST_ADDRESS_LINE1 = os.getenv("RETURN_DEST_ADDRESS_LINE1", "")
    RETURN_DEST_ADDRESS_LINE2 = os.getenv("RETURN_DEST_ADDRESS_LINE2", "")
    RETURN_DEST_CITY = os.getenv("RETURN_DEST_CITY", "")
    RETURN_DEST_STATE = os.getenv("RETURN_DEST_STATE", "")
    RETURN_DEST_PINCODE = os.getenv("RETURN_DEST_PINCODE", "")
    RETURN_DEST_PHONE = os.getenv("RETURN_DEST_PHONE", "")

    @property
    def RETURN_DESTINATION_FALLBACK(self) -> dict:
        """Fallback return address keyed like the order's destination_* columns"""
        return {
            "destination_name": self.RETURN_DEST_NAME,
            "destination_address_line1": self.RETURN_DEST_ADDRESS_LINE1,
            "destination_address_line2": self.RETURN_DEST_ADDRESS_LINE2,
            "destination_city": self.RETURN_DEST_CITY,
            "destination_state": self.RETURN_DEST_STATE,
            "destination_pincode": self.RETURN_DEST_PINCODE,
            "destination_phone": self.RETURN_DEST_PHONE,
        }

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if IS_PRODUCTION else "DEBUG")

    # API Configuration
    API_PREFIX = "/api"

    def __str__(self):
        return f"Settings(ENV={self.ENV}, IS_PRODUCTION={self.IS_PRODUCTION})"

# Global settings instance
settings = Settings()
