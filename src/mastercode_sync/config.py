import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ImwebSettings:
    base_url: str
    client_id: str
    client_secret: str
    shop_id: str
    timeout_seconds: float = 10.0
    token_refresh_margin_seconds: float = 60.0

    @classmethod
    def from_env(cls) -> "ImwebSettings | None":
        """Return settings only when every Imweb variable is present.

        Any missing value routes the push path to the simulated client.
        """
        values = {
            "base_url": os.environ.get("IMWEB_BASE_URL", "").strip(),
            "client_id": os.environ.get("IMWEB_CLIENT_ID", "").strip(),
            "client_secret": os.environ.get("IMWEB_CLIENT_SECRET", "").strip(),
            "shop_id": os.environ.get("IMWEB_SHOP_ID", "").strip(),
            "timeout": os.environ.get("IMWEB_TIMEOUT_SECONDS", "").strip(),
        }
        if not all(values.values()):
            return None

        return cls(
            base_url=values["base_url"].rstrip("/"),
            client_id=values["client_id"],
            client_secret=values["client_secret"],
            shop_id=values["shop_id"],
            timeout_seconds=float(values["timeout"]),
        )


@dataclass(frozen=True)
class Config:
    database_url: str
    log_format: str = "json"
    log_level: str = "INFO"
    imweb: ImwebSettings | None = None

    @classmethod
    def from_env(cls) -> "Config":
        database_url = os.environ.get("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL must be set")

        return cls(
            database_url=database_url,
            log_format=os.environ.get("MASTERCODE_LOG_FORMAT", "json"),
            log_level=os.environ.get("MASTERCODE_LOG_LEVEL", "INFO").upper(),
            imweb=ImwebSettings.from_env(),
        )
