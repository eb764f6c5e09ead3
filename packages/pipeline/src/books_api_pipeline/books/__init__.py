from .gateway import BooksGateway, GatewayRouter, VersionHandlers
from .models import (
    SENTINEL_PREFIX,
    Book,
    TypedItem,
    is_sentinel_key,
    new_sentinel_key,
    sentinel_book,
)
from .service import Handler, make_create_handler, make_list_handler
from .table import BookTable, InMemoryBookTable, RecordStore, TableRegistry

__all__ = [
    "BooksGateway",
    "GatewayRouter",
    "VersionHandlers",
    "SENTINEL_PREFIX",
    "Book",
    "TypedItem",
    "is_sentinel_key",
    "new_sentinel_key",
    "sentinel_book",
    "Handler",
    "make_create_handler",
    "make_list_handler",
    "BookTable",
    "InMemoryBookTable",
    "RecordStore",
    "TableRegistry",
]
