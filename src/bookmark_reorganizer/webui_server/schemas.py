from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class BookmarkItem(BaseModel):
    title: str
    url: str = Field(min_length=1)


class PlanRequest(BaseModel):
    bookmarks: list[BookmarkItem] | None = None


class ApplyRequest(BaseModel):
    mapping: dict[str, dict[str, str]]
    description: str | None = Field(default=None, max_length=200)

    @field_validator("mapping")
    @classmethod
    def check_category_names(cls, value: dict[str, dict[str, str]]) -> dict[str, dict[str, str]]:
        blank = [name for name in value if not name.strip()]
        if blank:
            raise ValueError("Category names must not be blank.")
        return value


class MoveEntryRequest(BaseModel):
    mapping: dict[str, dict[str, str]]
    title: str
    from_category: str = Field(min_length=1)
    to_category: str = Field(min_length=1)
