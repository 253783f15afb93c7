"""Fixed value lists and store layout for pet reports."""

CATEGORIES = ["missing", "found"]

SPECIES = ["dog", "cat", "bird", "other"]
DEFAULT_SPECIES = "dog"

# category -> Firestore collection
COLLECTIONS = {
    "missing": "missing_pets",
    "found": "found_pets",
}

# 위치 라벨 컬럼명은 카테고리마다 다름 (missing: 마지막 목격 장소, found: 발견 장소)
LOCATION_COLUMNS = {
    "missing": "last_seen",
    "found": "found_at",
}

ORDER_BY_FIELD = "created_at"

# Photo uploads
ALLOWED_PHOTO_TYPES = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp"}
PHOTO_PATH_PREFIX = "pets"
