"""Engine manager configuration."""

from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from YAKIT_* environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_prefix="YAKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Development mode: human-readable logs instead of JSON lines
    dev_mode: bool = True

    # User-writable state (auth profiles, local kv, staged binaries)
    home_dir: Path = Path.home() / "yakit-projects"

    # Engine
    engine_name: str = "yak"
    download_origin: str = "https://yaklang.oss-cn-beijing.aliyuncs.com"

    # Launch port range, half-open [start, end)
    port_range_start: int = 50000
    port_range_end: int = 60000
    launch_grace_seconds: float = 1.0

    # Network
    http_timeout_seconds: float = 15.0
    download_timeout_seconds: float = 600.0
    download_connect_timeout_seconds: float = 10.0
    download_max_attempts: int = 3
    download_chunk_size: int = 64 * 1024

    # Subprocesses
    subprocess_timeout_seconds: float = 30.0
    elevation_timeout_seconds: float = 300.0  # the user has to answer a prompt

    # Logging
    log_level: str = "info"

    @model_validator(mode="after")
    def _validate_port_range(self) -> "Settings":
        if self.port_range_start <= 0 or self.port_range_end > 65536:
            raise ValueError("port range must lie within 1-65535")
        if self.port_range_start >= self.port_range_end:
            raise ValueError(
                "YAKIT_PORT_RANGE_START must be lower than YAKIT_PORT_RANGE_END"
            )
        return self

    @property
    def auth_dir(self) -> Path:
        return self.home_dir / "auth"

    @property
    def base_dir(self) -> Path:
        return self.home_dir / "base"

    @property
    def engine_dir(self) -> Path:
        return self.home_dir / "yak-engine"

    @property
    def secret_file(self) -> Path:
        return self.auth_dir / "yakit-remote.json"

    @property
    def kv_file(self) -> Path:
        return self.base_dir / "yakit-local.json"

    def ensure_dirs(self) -> None:
        """Create the user-writable state directories if they are missing."""
        for directory in (self.auth_dir, self.base_dir, self.engine_dir):
            directory.mkdir(parents=True, exist_ok=True)


settings = Settings()
