from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class DisplaySettings(BaseModel):
    currency_symbol: str = "₱"
    precision: int = 2
    timezone: str = "Asia/Manila"


class CacheSettings(BaseModel):
    enabled: bool = True
    ttl_seconds: int = 300


class FeatureFlags(BaseModel):
    ai_insights: bool = True
    export_functionality: bool = True
    advanced_filtering: bool = True
    scheduled_cleanup: bool = True


class Settings(BaseSettings):
    app_name: str = "Scout Retail Analytics"
    environment: str = "development"
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"
    rate_limit: str = "120/minute"

    supabase_url: str = ""
    supabase_key: str = ""
    transactions_table: str = "transactions"
    page_size: int = 1000

    storage_url: str = "sqlite:///./scout_local_store.db"
    filter_expiration_hours: int = 24
    storage_max_age_hours: int = 168
    cleanup_interval_hours: int = 6

    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    azure_openai_endpoint: str = ""
    azure_openai_api_key: str = ""
    azure_openai_deployment: str = "gpt-4o-deployment"
    azure_openai_api_version: str = "2024-02-01"
    llm_temperature: float = 0.7
    llm_max_tokens: int = 1000
    chat_max_sessions: int = 500

    display: DisplaySettings = DisplaySettings()
    cache: CacheSettings = CacheSettings()
    features: FeatureFlags = FeatureFlags()

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", env_nested_delimiter="__")

    @property
    def datastore_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @property
    def llm_configured(self) -> bool:
        return bool((self.azure_openai_endpoint and self.azure_openai_api_key) or self.openai_api_key)


settings = Settings()
