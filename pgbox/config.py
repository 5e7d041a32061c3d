"""Environment-driven settings."""

import os
from dataclasses import dataclass


@dataclass
class Settings:
    log_level: str = "INFO"
    host_proc: str = "/proc"
    demux_cleanup_timeout: float = 5.0

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            log_level=os.getenv("PGBOX_LOG_LEVEL", "INFO").upper(),
            host_proc=os.getenv("PGBOX_HOST_PROC", "/proc"),
            demux_cleanup_timeout=float(os.getenv("PGBOX_DEMUX_CLEANUP_TIMEOUT", "5")),
        )
