"""CHANSPLIT global configuration."""

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Conversion settings loaded from environment variables."""

    # Memory governor (0 disables the soft ceiling)
    memory_ceiling_mb: float = 1024.0
    reclaim_pause_s: float = 0.05
    memory_probe: Literal["rss", "traced"] = "rss"

    # Output
    output_suffix: str = "_converted"
    text_charset: str = "latin1"  # round-trips meta text bytes unchanged

    model_config = {"env_prefix": "CHANSPLIT_"}

    @property
    def memory_ceiling_bytes(self) -> int | None:
        if self.memory_ceiling_mb <= 0:
            return None
        return int(self.memory_ceiling_mb * 1024 * 1024)


settings = Settings()
