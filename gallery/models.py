from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Caller-facing records use camelCase field names; the database and Python
# attributes use snake_case. The alias generator keeps that mapping total.


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ImageRecord(CamelModel):
    """One gallery entry as callers see it. `tags` is a plain list of names."""

    # Older JSON galleries spell these 'id' (sometimes an integer) and 'date'.
    public_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("publicId", "public_id", "id"),
        serialization_alias="publicId",
    )
    title: Optional[str] = None
    description: Optional[str] = None
    src: Optional[str] = None
    ranking: Optional[float] = None
    width: Optional[str] = None
    height: Optional[str] = None
    is_major: bool = True
    group_id: Optional[str] = None
    major_image_id: Optional[str] = None
    date_added: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("dateAdded", "date_added", "date"),
        serialization_alias="dateAdded",
    )
    tags: List[str] = Field(default_factory=list)

    @field_validator("public_id", "major_image_id", "group_id", mode="before")
    @classmethod
    def _identifier_to_text(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("ranking", mode="before")
    @classmethod
    def _blank_ranking_is_empty(cls, value):
        # An empty ranking stays empty. No default is ever synthesized here.
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("is_major", mode="before")
    @classmethod
    def _missing_flag_is_major(cls, value):
        return True if value is None else value

    @field_validator("tags", mode="before")
    @classmethod
    def _missing_tags_are_empty(cls, value):
        return [] if value is None else value


class ImagePayload(ImageRecord):
    """An image sent by the request layer. `originalId` signals an identifier rename."""

    original_id: Optional[str] = None

    @field_validator("original_id", mode="before")
    @classmethod
    def _original_id_to_text(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    def to_record(self) -> ImageRecord:
        return ImageRecord.model_validate(self.model_dump(exclude={"original_id"}))


class GalleryData(CamelModel):
    images: List[ImageRecord] = Field(default_factory=list)
    available_tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class GalleryStats(CamelModel):
    total_images: int = 0
    total_tags: int = 0
    major_images: int = 0
    total_groups: int = 0
    file_size: Optional[int] = None
    last_modified: Optional[str] = None


class MigrationResult(CamelModel):
    migrated: bool
    counts: Dict[str, int] = Field(default_factory=dict)
    backup_path: Optional[str] = None


class ConversionResult(CamelModel):
    db_path: str
    converted: int = 0
    skipped: int = 0
    stats: GalleryStats = Field(default_factory=GalleryStats)
