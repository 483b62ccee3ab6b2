#placement_engine\config.py

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Placement engine configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # State store
    database_url: str = "sqlite:///./placement_state.db"
    echo_sql: bool = False
    pool_size: int = 5
    max_overflow: int = 10

    # Health probing
    probe_port: int = 8080
    probe_path: str = "/"
    probe_interval_seconds: float = 10.0
    probe_timeout_seconds: float = 5.0
    healthy_threshold: int = 3
    unhealthy_threshold: int = 3
    reschedule_after_failures: int = 6

    # Reconciliation
    reconcile_interval_seconds: float = 5.0
    host_stale_seconds: int = 300
    runtime_unreachable_threshold: int = 3

    # Backoff
    backoff_base_seconds: float = 10.0
    backoff_multiplier: float = 3.0
    backoff_max_seconds: float = 300.0
    capacity_max_attempts: int = 4
    attachment_max_attempts: int = 4

    # Volume attach waits
    attach_timeout_seconds: float = 60.0
    attach_poll_seconds: float = 2.0

    # Name publication
    dns_name: str = "cs2.example.com"
    front_door_address: Optional[str] = None

    # Persistent volume (optional variant)
    volume_enabled: bool = False
    volume_id: Optional[str] = None
    volume_size_gib: int = 60
    volume_storage_class: str = "gp3"
    volume_auto_provision: bool = True
    volume_mount_path: str = "/home/steam/cs2-dedicated"

    # Capacity pool host profile
    host_instance_type: str = "t3.large"
    host_cpu: float = 2.0
    host_memory_mib: int = 8192
    host_root_disk_gib: int = 60

    # Controller API
    api_host: str = "0.0.0.0"
    api_port: int = 9100

    # Secret store
    secret_env_prefix: str = ""


settings = EngineSettings()
