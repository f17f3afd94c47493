"""
schema.py - Metadata table definitions and the sample dataset.

Collection metadata lives in _collections: one row per collection,
with its fields serialized as a JSON array of
{"id", "name", "type", "collectionId"?, "maxSelect"?} objects.
"""

from typing import Any, Final

COLLECTIONS_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS _collections (
    id TEXT PRIMARY KEY,
    name TEXT UNIQUE NOT NULL,
    type TEXT NOT NULL DEFAULT 'base',
    fields TEXT NOT NULL DEFAULT '[]',
    created TEXT NOT NULL,
    updated TEXT NOT NULL
);
"""

SETTINGS_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS _settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    created TEXT NOT NULL,
    updated TEXT NOT NULL
);
"""

ALL_SCHEMA_STATEMENTS: Final[list[str]] = [
    COLLECTIONS_SCHEMA,
    SETTINGS_SCHEMA,
]

# Demo collections created by `pocketlite init --sample`
SAMPLE_TABLES: Final[str] = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    created TEXT NOT NULL,
    updated TEXT NOT NULL,
    name TEXT NOT NULL,
    email TEXT UNIQUE NOT NULL,
    username TEXT UNIQUE,
    avatar TEXT,
    verified INTEGER DEFAULT 0
);
CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    created TEXT NOT NULL,
    updated TEXT NOT NULL,
    name TEXT NOT NULL,
    slug TEXT UNIQUE NOT NULL
);
CREATE TABLE IF NOT EXISTS posts (
    id TEXT PRIMARY KEY,
    created TEXT NOT NULL,
    updated TEXT NOT NULL,
    title TEXT NOT NULL,
    content TEXT,
    authorId TEXT,
    categoryId TEXT,
    tags TEXT,
    published INTEGER DEFAULT 0,
    attachment TEXT,
    attachments TEXT
);
CREATE TABLE IF NOT EXISTS comments (
    id TEXT PRIMARY KEY,
    created TEXT NOT NULL,
    updated TEXT NOT NULL,
    postId TEXT NOT NULL,
    authorId TEXT NOT NULL,
    content TEXT NOT NULL
);
"""


def _field(name: str, type_: str = "text", **options: Any) -> dict[str, Any]:
    return {"id": f"fld_{name}", "name": name, "type": type_, **options}


def _relation(name: str, target_id: str, max_select: int = 1) -> dict[str, Any]:
    return _field(name, "relation", collectionId=target_id, maxSelect=max_select)


SAMPLE_COLLECTIONS: Final[list[dict[str, Any]]] = [
    {
        "id": "pbc_users",
        "name": "users",
        "type": "auth",
        "fields": [_field("name"), _field("email", "email"), _field("avatar", "file")],
    },
    {
        "id": "pbc_categories",
        "name": "categories",
        "fields": [_field("name"), _field("slug")],
    },
    {
        "id": "pbc_posts",
        "name": "posts",
        "fields": [
            _field("title"),
            _field("content", "editor"),
            _relation("authorId", "pbc_users"),
            _relation("categoryId", "pbc_categories"),
            _field("tags", "json"),
            _field("published", "bool"),
            _field("attachment", "file"),
            _field("attachments", "file", maxSelect=10),
        ],
    },
    {
        "id": "pbc_comments",
        "name": "comments",
        "fields": [
            _relation("postId", "pbc_posts"),
            _relation("authorId", "pbc_users"),
            _field("content"),
        ],
    },
]

SAMPLE_ROWS: Final[dict[str, list[dict[str, Any]]]] = {
    "users": [
        {"id": "user1xxxxxxxxxx", "name": "Alice Johnson", "email": "alice@example.com", "username": "alice", "verified": 1},
        {"id": "user2xxxxxxxxxx", "name": "Bob Smith", "email": "bob@example.com", "username": "bob", "verified": 1},
        {"id": "user3xxxxxxxxxx", "name": "Charlie Brown", "email": "charlie@example.com", "username": "charlie", "verified": 1},
    ],
    "categories": [
        {"id": "cat1xxxxxxxxxxx", "name": "Technology", "slug": "technology"},
        {"id": "cat2xxxxxxxxxxx", "name": "Lifestyle", "slug": "lifestyle"},
    ],
    "posts": [
        {"id": "post1xxxxxxxxxx", "title": "Introduction to SQLite", "content": "SQLite is an embedded database...",
         "authorId": "user1xxxxxxxxxx", "categoryId": "cat1xxxxxxxxxxx", "tags": '["sqlite","databases"]', "published": 1},
        {"id": "post2xxxxxxxxxx", "title": "Healthy Living Tips", "content": "Here are some tips for healthy living...",
         "authorId": "user2xxxxxxxxxx", "categoryId": "cat2xxxxxxxxxxx", "tags": '["health","wellness"]', "published": 1},
        {"id": "post3xxxxxxxxxx", "title": "Draft Post", "content": "This is a draft...",
         "authorId": "user1xxxxxxxxxx", "categoryId": "cat1xxxxxxxxxxx", "tags": "[]", "published": 0},
    ],
    "comments": [
        {"id": "comm1xxxxxxxxxx", "postId": "post1xxxxxxxxxx", "authorId": "user2xxxxxxxxxx", "content": "Great article!"},
        {"id": "comm2xxxxxxxxxx", "postId": "post1xxxxxxxxxx", "authorId": "user3xxxxxxxxxx", "content": "Very informative."},
        {"id": "comm3xxxxxxxxxx", "postId": "post2xxxxxxxxxx", "authorId": "user1xxxxxxxxxx", "content": "Thanks for sharing!"},
    ],
}
