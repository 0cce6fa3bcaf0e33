from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Slipkeeper"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # OCR
    TESSERACT_CMD: str = "/usr/local/bin/tesseract"  # macOS default
    TESSERACT_CONFIG: str = "--oem 3 --psm 6"
    OCR_CONTRAST_FACTOR: float = 2.0

    # Vision provider (empty key disables it)
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    VISION_TIMEOUT_SECONDS: float = 30.0

    # Extraction
    DEFAULT_VAT_RATE: float = 0.15
    VAT_RATE_MIN: float = 0.05
    VAT_RATE_MAX: float = 0.30
    MIN_TEXT_LENGTH: int = 10
    MIN_PROVIDER_CONFIDENCE: float = 0.10
    HEADER_ZONE_LINES: int = 15
    LIFETIME_WARRANTY_MONTHS: int = 120
    MAX_POLICY_DAYS: int = 365

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""
    SUPABASE_SERVICE_KEY: str = ""
    MERCHANT_RULES_TABLE: str = "merchant_rules"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
