from __future__ import annotations

import uuid
from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field

# Reserved for pre-traffic sentinels; the API refuses creates under it.
SENTINEL_PREFIX: Final[str] = "__pretraffic__:"

TypedItem = dict[str, dict[str, str]]


def is_sentinel_key(isbn: str) -> bool:
    return isbn.startswith(SENTINEL_PREFIX)


def new_sentinel_key(tag: str | None = None) -> str:
    return f"{SENTINEL_PREFIX}{tag or uuid.uuid4().hex}"


class Book(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    isbn: str = Field(min_length=1)
    title: str
    year: int = Field(ge=0)
    author: str
    publisher: str
    rating: int = Field(ge=0)
    pages: int = Field(ge=0)

    def to_item(self) -> TypedItem:
        """Attribute-typed item as stored in the table (S for strings, N for numbers)."""
        return {
            "isbn": {"S": self.isbn},
            "title": {"S": self.title},
            "year": {"N": str(self.year)},
            "author": {"S": self.author},
            "publisher": {"S": self.publisher},
            "rating": {"N": str(self.rating)},
            "pages": {"N": str(self.pages)},
        }

    @classmethod
    def from_item(cls, item: TypedItem) -> "Book":
        return cls(
            isbn=item["isbn"]["S"],
            title=item["title"]["S"],
            year=int(item["year"]["N"]),
            author=item["author"]["S"],
            publisher=item["publisher"]["S"],
            rating=int(item["rating"]["N"]),
            pages=int(item["pages"]["N"]),
        )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump()


def sentinel_book(tag: str | None = None) -> Book:
    return Book(
        isbn=new_sentinel_key(tag),
        title="Smoke Test",
        year=1111,
        author="Test",
        publisher="Test",
        rating=1,
        pages=111,
    )
