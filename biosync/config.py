import logging
import os

from pydantic import BaseModel

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class DirectorySettings(BaseModel):
    """
    Connection settings for the beneficiary directory.

    Nothing here is validated up front: a missing base URL or credential
    only surfaces when a request to the directory fails.
    """

    base_url: str = ""
    user: str = ""
    password: str = ""
    clinic: str = ""
    provider_code: str = ""
    health_insurer_code: str = ""
    timeout_seconds: float = 30.0
    sync_interval_seconds: float = 0.2

    @classmethod
    def from_env(cls) -> "DirectorySettings":
        return cls(
            base_url=os.getenv("DIRECTORY_BASE_URL", ""),
            user=os.getenv("DIRECTORY_USER", ""),
            password=os.getenv("DIRECTORY_PASSWORD", ""),
            clinic=os.getenv("DIRECTORY_CLINIC", ""),
            provider_code=os.getenv("DIRECTORY_PROVIDER_CODE", ""),
            health_insurer_code=os.getenv("DIRECTORY_HEALTH_INSURER_CODE", ""),
            timeout_seconds=float(os.getenv("DIRECTORY_TIMEOUT", "30")),
            sync_interval_seconds=float(os.getenv("DIRECTORY_SYNC_INTERVAL", "0.2")),
        )


def configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format=LOG_FORMAT,
    )
