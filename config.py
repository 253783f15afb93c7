from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env.local", env_file_encoding="utf-8", extra="ignore")

    # Firebase
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = None
    FIREBASE_CREDENTIALS_JSON_STRING: Optional[str] = None
    FIREBASE_STORAGE_BUCKET: Optional[str] = None  # firebase storage bucket name (e.g. my-app.appspot.com)

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False  # 운영 환경에서 JSON 로그

    # 데이터 백엔드 선택
    DATA_BACKEND: str = "auto"  # auto | firestore | memory
    MEMORY_SEED_DEMO_DATA: bool = True

    # Geocoder (Nominatim compatible)
    GEOCODER_BASE_URL: str = "https://nominatim.openstreetmap.org"
    GEOCODER_USER_AGENT: str = "pawmap/0.1 (+https://github.com/pawmap)"
    REQUEST_TIMEOUT_SECONDS: float = 10.0

    # Search behaviour
    SEARCH_RESULT_LIMIT: int = 10
    AUTOCOMPLETE_RESULT_LIMIT: int = 5
    SEARCH_DEBOUNCE_MS: int = 350
    SEARCH_MIN_QUERY_CHARS: int = 3

    # Map camera
    MAP_DEFAULT_CENTER_LAT: float = 51.505
    MAP_DEFAULT_CENTER_LNG: float = -0.09
    MAP_DEFAULT_ZOOM: int = 13
    MAP_CLOSE_UP_ZOOM: int = 15
    MAP_SEARCH_RESULT_ZOOM: int = 16

    # Photo upload
    PHOTO_MAX_BYTES: int = 10 * 1024 * 1024  # 10MB


settings = Settings()
