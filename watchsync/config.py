from typing import List, Optional
from urllib.parse import urlsplit
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

class LibraryEndpoint(BaseModel):
    name: str
    address: str
    api_url: str
    username: str = ""
    password: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.api_url)

    @property
    def port(self) -> int:
        parts = urlsplit(self.api_url)
        if parts.port:
            return parts.port
        return 443 if parts.scheme == "https" else 80

class Settings(BaseSettings):
    # First library
    LIBRARY_A_NAME: str = "Kodi"
    LIBRARY_A_ADDRESS: str = ""
    LIBRARY_A_API_URL: str = ""
    LIBRARY_A_USERNAME: str = "kodi"
    LIBRARY_A_PASSWORD: str = ""

    # Second library
    LIBRARY_B_NAME: str = "OpenELEC"
    LIBRARY_B_ADDRESS: str = ""
    LIBRARY_B_API_URL: str = ""
    LIBRARY_B_USERNAME: str = "kodi"
    LIBRARY_B_PASSWORD: str = ""

    # Persistence
    DATA_DIR: str = "/data"

    # Network
    REQUEST_TIMEOUT_SECONDS: int = 5
    PROBE_TIMEOUT_SECONDS: int = 3

    # Run
    SECONDS_BEFORE_CLOSE: int = 10
    SYNC_INTERVAL_SECONDS: int = 0  # 0 = single run
    DRY_RUN: bool = False

    # System
    LOG_LEVEL: str = "INFO"
    HTTP_SERVER_ENABLED: bool = False
    HTTP_SERVER_PORT: int = 8080
    HTTP_SERVER_TOKEN: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    def _endpoint(self, name: str, address: str, api_url: str, username: str, password: str) -> LibraryEndpoint:
        # Fall back to the API host so probing and cache naming still work
        if not address and api_url:
            address = urlsplit(api_url).hostname or ""
        return LibraryEndpoint(name=name, address=address, api_url=api_url, username=username, password=password)

    def endpoints(self) -> List[LibraryEndpoint]:
        return [
            self._endpoint(self.LIBRARY_A_NAME, self.LIBRARY_A_ADDRESS, self.LIBRARY_A_API_URL,
                           self.LIBRARY_A_USERNAME, self.LIBRARY_A_PASSWORD),
            self._endpoint(self.LIBRARY_B_NAME, self.LIBRARY_B_ADDRESS, self.LIBRARY_B_API_URL,
                           self.LIBRARY_B_USERNAME, self.LIBRARY_B_PASSWORD),
        ]

settings = Settings()
