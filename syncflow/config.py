from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "SyncFlow"
    DATABASE_URL: str = "sqlite:///./syncflow.db"

    LOG_LEVEL: str = "INFO"

    # Defaults applied when a request omits part of the inventory key
    DEFAULT_WAREHOUSE_TYPE: str = "general"
    DEFAULT_PACKAGE_SPEC: str = "820kg"

    # Actor recorded in audit logs when the caller does not name one
    DEFAULT_OPERATOR: str = "system"

    # Warehouse allocation must sum to the order total within this tolerance (tons)
    ALLOCATION_TOLERANCE: float = 0.01

    # Orders at or above this tonnage are flagged as large orders
    LARGE_ORDER_THRESHOLD: float = 100.0

    # Ledger / audit log pagination
    DEFAULT_PAGE_SIZE: int = 50
    MAX_PAGE_SIZE: int = 500

    # Read-through cache for list endpoints
    CACHE_TTL_SECONDS: float = 15.0
    CACHE_MAX_SIZE: int = 1000

    # Seed demo lines, inventory and orders into an empty database
    SEED_DEMO_DATA: bool = False

    model_config = {"env_file": ".env"}


settings = Settings()
