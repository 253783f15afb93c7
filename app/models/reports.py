from __future__ import annotations
import math
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.domain import pet_report_schema as schema


class Category(str, Enum):
    MISSING = "missing"
    FOUND = "found"


class Species(str, Enum):
    DOG = "dog"
    CAT = "cat"
    BIRD = "bird"
    OTHER = "other"


class PetReportDraft(BaseModel):
    """Client-composed report; no id until the store assigns one."""
    model_config = ConfigDict(frozen=True)

    category: Category
    pet_name: str = Field(min_length=1)
    breed: str = ""
    species: Species = Species.DOG
    location_label: str = ""
    contact: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    photo_url: Optional[str] = None

    @field_validator("pet_name", mode="before")
    @classmethod
    def _strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("lat", "lng", mode="before")
    @classmethod
    def _reject_bool_coordinate(cls, v):
        # bool is an int subclass; lax float mode would turn True into 1.0
        if isinstance(v, bool):
            raise ValueError("coordinate must be a number, not a boolean")
        return v

    @field_validator("species", mode="before")
    @classmethod
    def _normalize_species(cls, v):
        # stored rows use "Dog" / "dog" interchangeably
        if isinstance(v, str):
            v = v.strip().lower() or schema.DEFAULT_SPECIES
            if v not in schema.SPECIES:
                v = Species.OTHER.value
        return v

    @model_validator(mode="after")
    def _coordinate_pair(self):
        if (self.lat is None) != (self.lng is None):
            raise ValueError("lat and lng must both be present or both absent")
        for v in (self.lat, self.lng):
            if v is not None and not math.isfinite(v):
                raise ValueError("coordinate must be a finite number")
        return self

    @property
    def has_location(self) -> bool:
        return self.lat is not None

    def to_row(self) -> Dict[str, Any]:
        """Shape used by the remote store (snake_case columns, category tag in `type`)."""
        row = {
            "pet_name": self.pet_name,
            "breed": self.breed,
            "species": self.species.value,
            schema.LOCATION_COLUMNS[self.category.value]: self.location_label,
            "contact": self.contact,
            "lat": self.lat,
            "lng": self.lng,
            "type": self.category.value,
        }
        if self.photo_url:
            row["photo_url"] = self.photo_url
        return row


class PetReport(PetReportDraft):
    id: str = Field(min_length=1)
    created_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @classmethod
    def from_row(cls, category: Category | str, row: Dict[str, Any]) -> "PetReport":
        """Validate a raw store row. Raises pydantic.ValidationError on bad shape."""
        cat = Category(category)
        return cls(
            id=row.get("id"),
            category=cat,
            pet_name=row.get("pet_name"),
            breed=row.get("breed") or "",
            species=row.get("species") or schema.DEFAULT_SPECIES,
            location_label=row.get(schema.LOCATION_COLUMNS[cat.value]) or "",
            contact=row.get("contact") or "",
            lat=row.get("lat"),
            lng=row.get("lng"),
            photo_url=row.get("photo_url"),
            created_at=row.get("created_at"),
        )
