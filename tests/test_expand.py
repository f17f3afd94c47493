"""
test_expand.py - Tests for relation expansion.
"""

import asyncio
import copy
import json

import pytest

from pocketlite.expand import (
    ExpandPath,
    ExpandResolver,
    normalize_sort,
    parse_relation_ids,
    split_expand,
)
from pocketlite.relations import NamingConventionStrategy, RelationLookup
from pocketlite.utils.codec import decode_row


def fetch(storage, sql, params=()):
    return [decode_row(r) for r in asyncio.run(storage.fetch_all(sql, params))]


class TestExpandParsing:

    def test_plain_path(self):
        assert ExpandPath.parse("authorId") == ExpandPath("authorId")

    def test_nested_with_sort(self):
        path = ExpandPath.parse("comments(created:desc).authorId")
        assert path.field == "comments"
        assert path.sort == "created:desc"
        assert path.rest == "authorId"

    def test_sort_with_several_fields(self):
        assert split_expand("tagIds(-name,created),authorId") == ["tagIds(-name,created)", "authorId"]
        assert ExpandPath.parse("tagIds(-name,created)").sort == "-name,created"

    def test_normalize_sort(self):
        assert normalize_sort("created:desc") == "-created"
        assert normalize_sort("name:asc,-created") == "name,-created"

    @pytest.mark.parametrize("value,expected", [
        (None, []),
        ("", []),
        (["a", "b"], ["a", "b"]),
        ('["a","b"]', ["a", "b"]),
        ("a, b", ["a", "b"]),
        ("a", ["a"]),
    ])
    def test_parse_relation_ids(self, value, expected):
        assert parse_relation_ids(value) == expected


class TestExpandResolver:

    def test_single_relation(self, sample_storage, resolver):
        posts = fetch(sample_storage, "SELECT * FROM posts WHERE id = ?", ("post1xxxxxxxxxx",))
        asyncio.run(resolver.resolve(posts, "posts", "authorId,categoryId"))

        expand = posts[0]["expand"]
        assert expand["authorId"]["name"] == "Alice Johnson"
        assert expand["authorId"]["collectionName"] == "users"
        assert expand["categoryId"]["slug"] == "technology"

    def test_nested_relation(self, sample_storage, resolver):
        comments = fetch(sample_storage, "SELECT * FROM comments ORDER BY id")
        asyncio.run(resolver.resolve(comments, "comments", "postId.authorId"))

        post = comments[0]["expand"]["postId"]
        assert post["id"] == "post1xxxxxxxxxx"
        assert post["expand"]["authorId"]["id"] == "user1xxxxxxxxxx"
        third = comments[2]["expand"]["postId"]
        assert third["expand"]["authorId"]["id"] == "user2xxxxxxxxxx"

    def test_unknown_path_is_skipped(self, sample_storage, resolver):
        posts = fetch(sample_storage, "SELECT * FROM posts")
        asyncio.run(resolver.resolve(posts, "posts", "title,authorId"))
        assert all("title" not in p["expand"] for p in posts)
        assert all("authorId" in p["expand"] for p in posts)

    def test_failing_path_does_not_fail_read(self, sample_storage, resolver):
        asyncio.run(sample_storage.execute_script(
            "CREATE TABLE pins (id TEXT PRIMARY KEY, boardId TEXT, userId TEXT);"
            "INSERT INTO pins VALUES ('p1', 'b1', 'user1xxxxxxxxxx');"
        ))
        pins = fetch(sample_storage, "SELECT * FROM pins")
        # boardId points at a "boards" table that does not exist
        asyncio.run(resolver.resolve(pins, "pins", "boardId,userId"))
        assert "boardId" not in pins[0]["expand"]
        assert pins[0]["expand"]["userId"]["name"] == "Alice Johnson"

    def test_idempotent(self, sample_storage, resolver):
        comments = fetch(sample_storage, "SELECT * FROM comments ORDER BY id")
        asyncio.run(resolver.resolve(comments, "comments", "postId.authorId,authorId"))
        first = json.dumps([c["expand"] for c in comments], sort_keys=True)

        again = copy.deepcopy(comments)
        asyncio.run(resolver.resolve(again, "comments", "postId.authorId,authorId"))
        assert json.dumps([c["expand"] for c in again], sort_keys=True) == first

    def test_empty_inputs(self, resolver):
        assert asyncio.run(resolver.resolve([], "posts", "authorId")) == []
        records = [{"id": "x"}]
        asyncio.run(resolver.resolve(records, "posts", ""))
        assert "expand" not in records[0]


class TestMultipleRelations:

    def setup_method(self):
        self.tags = [
            {"id": "t1", "name": "beta"},
            {"id": "t2", "name": "alpha"},
            {"id": "t3", "name": "gamma"},
        ]

    def _seed(self, storage):
        asyncio.run(storage.execute_script(
            "CREATE TABLE tags (id TEXT PRIMARY KEY, name TEXT);"
            "CREATE TABLE notes (id TEXT PRIMARY KEY, tagIds TEXT);"
        ))
        for tag in self.tags:
            asyncio.run(storage.execute("INSERT INTO tags VALUES (?, ?)", (tag["id"], tag["name"])))
        asyncio.run(storage.execute("INSERT INTO notes VALUES ('n1', ?)", (json.dumps(["t3", "t1"]),)))
        asyncio.run(storage.execute("INSERT INTO notes VALUES ('n2', ?)", (json.dumps(["t2"]),)))

    def test_keeps_record_id_order(self, storage):
        self._seed(storage)
        resolver = ExpandResolver(storage, _naming_only())
        notes = fetch(storage, "SELECT * FROM notes ORDER BY id")
        asyncio.run(resolver.resolve(notes, "notes", "tagIds"))

        assert [t["id"] for t in notes[0]["expand"]["tagIds"]] == ["t3", "t1"]
        assert [t["id"] for t in notes[1]["expand"]["tagIds"]] == ["t2"]

    def test_per_level_sort_keeps_record_id_order(self, storage):
        self._seed(storage)
        resolver = ExpandResolver(storage, _naming_only())
        notes = fetch(storage, "SELECT * FROM notes ORDER BY id")
        # Ascending by name would be beta (t1), gamma (t3)
        asyncio.run(resolver.resolve(notes, "notes", "tagIds(name)"))

        assert [t["id"] for t in notes[0]["expand"]["tagIds"]] == ["t3", "t1"]

    def test_per_level_sort_is_accepted_in_both_forms(self, storage):
        self._seed(storage)
        resolver = ExpandResolver(storage, _naming_only())
        notes = fetch(storage, "SELECT * FROM notes ORDER BY id")
        asyncio.run(resolver.resolve(notes, "notes", "tagIds(name:desc),tagIds(-name)"))

        assert [t["name"] for t in notes[0]["expand"]["tagIds"]] == ["gamma", "beta"]


def _naming_only():
    return RelationLookup([NamingConventionStrategy()])
