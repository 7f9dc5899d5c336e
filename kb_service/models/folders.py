"""Folder and category taxonomy models."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FolderVisibility(str, Enum):
    """Who can see a folder."""
    PUBLIC = "public"
    LOGGED_IN = "logged_in"
    PRIVATE = "private"

    @classmethod
    def from_origin(cls, value: Any) -> "FolderVisibility":
        """Map engine visibility codes (1, 2, 3 or names) to the enum."""
        if isinstance(value, cls):
            return value
        codes = {1: cls.PUBLIC, 2: cls.LOGGED_IN, 3: cls.PRIVATE}
        if isinstance(value, int):
            return codes.get(value, cls.LOGGED_IN)
        if isinstance(value, str):
            text = value.strip().lower().replace("-", "_").replace(" ", "_")
            if text.isdigit():
                return codes.get(int(text), cls.LOGGED_IN)
            for member in cls:
                if member.value == text:
                    return member
        return cls.LOGGED_IN


class CategoryRecord(BaseModel):
    """A knowledge base category."""

    model_config = ConfigDict(frozen=True)

    category_id: str
    name: str
    description: Optional[str] = None
    created_at_source: Optional[str] = None
    updated_at_source: Optional[str] = None

    @field_validator("category_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        if isinstance(v, int):
            return str(v)
        return v

    @classmethod
    def from_origin(cls, data: Dict[str, Any]) -> "CategoryRecord":
        """Build a record from an engine category object."""
        return cls(
            category_id=data.get("id", data.get("category_id")),
            name=data.get("name") or "",
            description=data.get("description") or None,
            created_at_source=data.get("created_at"),
            updated_at_source=data.get("updated_at"),
        )


class FolderRecord(BaseModel):
    """A knowledge base folder inside a category."""

    model_config = ConfigDict(frozen=True)

    folder_id: str
    name: str
    description: Optional[str] = None
    category_id: str
    category_name: Optional[str] = None
    visibility: FolderVisibility = FolderVisibility.LOGGED_IN
    created_at_source: Optional[str] = None
    updated_at_source: Optional[str] = None

    @field_validator("folder_id", "category_id", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        if isinstance(v, int):
            return str(v)
        return v

    @field_validator("visibility", mode="before")
    @classmethod
    def parse_visibility(cls, v):
        return FolderVisibility.from_origin(v)

    @classmethod
    def from_origin(cls, data: Dict[str, Any]) -> "FolderRecord":
        """Build a record from an engine folder object."""
        return cls(
            folder_id=data.get("id", data.get("folder_id")),
            name=data.get("name") or "",
            description=data.get("description") or None,
            category_id=data.get("category_id"),
            category_name=data.get("category_name"),
            visibility=data.get("visibility") or FolderVisibility.LOGGED_IN,
            created_at_source=data.get("created_at"),
            updated_at_source=data.get("updated_at"),
        )


class FolderCacheInfo(BaseModel):
    """Where a folder listing came from and how fresh it is."""

    source: str = Field(..., description="database_cache or origin_direct")
    last_refresh: Optional[str] = None
    is_stale: bool = False
    fetch_duration_ms: Optional[int] = None


class FolderListing(BaseModel):
    """Folders and categories returned to callers."""

    success: bool = True
    folders: List[FolderRecord] = Field(default_factory=list)
    categories: List[CategoryRecord] = Field(default_factory=list)
    cache_info: FolderCacheInfo
    error: Optional[str] = None

    @property
    def total_folders(self) -> int:
        return len(self.folders)

    @property
    def total_categories(self) -> int:
        return len(self.categories)
