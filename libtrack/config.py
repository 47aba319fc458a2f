from pydantic_settings import BaseSettings
from typing import Optional
from pathlib import Path

# Get the project directory (parent of libtrack directory)
PROJECT_DIR = Path(__file__).parent.parent
ENV_FILE = PROJECT_DIR / ".env"

class Settings(BaseSettings):
    # Server settings (non-confidential, can have defaults)
    host: str = "0.0.0.0"
    port: int = 3000
    
    # Full SQLAlchemy URL; when set, the postgres parts below are ignored
    database_url: Optional[str] = None
    
    # Database settings - confidential values from .env
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: Optional[str] = None
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    
    # Database SSL settings
    db_ssl_mode: str = "prefer"  # Options: disable, allow, prefer, require, verify-ca, verify-full
    db_ssl_cert: Optional[str] = None
    db_ssl_key: Optional[str] = None
    db_ssl_root_cert: Optional[str] = None
    
    # JWT settings - confidential values from .env
    jwt_secret_key: str  # Required from .env (confidential - no default)
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 1440
    
    # Display timezone for reservation dates
    timezone: str = "Asia/Kuala_Lumpur"
    
    # Reservation lifecycle
    reservation_max_age_hours: float = 24  # Pending reservations older than this are swept
    reservation_sweep_interval_seconds: int = 300
    sweeper_enabled: bool = True
    
    # MQTT change notifications (best-effort)
    mqtt_enabled: bool = False
    mqtt_broker: str = "localhost"
    mqtt_port: int = 1883
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None
    mqtt_events_topic: str = "library/reservations/events"
    
    # MQTT TLS/SSL settings
    mqtt_use_tls: bool = False
    mqtt_tls_insecure: bool = False  # Allow insecure TLS (self-signed certs)
    mqtt_ca_cert: Optional[str] = None
    mqtt_client_cert: Optional[str] = None
    mqtt_client_key: Optional[str] = None
    
    class Config:
        env_file = str(ENV_FILE) if ENV_FILE.exists() else ".env"
        case_sensitive = False

settings = Settings()
