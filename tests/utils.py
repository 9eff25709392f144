import itertools
import re
from typing import Any


def clean_cli_output(output: str) -> str:
    """
    Remove ANSI escape codes, Rich formatting characters, whitespace, and newlines
    from CLI output to make assertions robust against terminal wrapping.
    """
    ansi_escape = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")
    output = ansi_escape.sub("", output)
    return re.sub(r"[\s│╭╮╰╯─]", "", output)


class FakeSnapshot:
    def __init__(self, doc_id: str, data: dict[str, Any] | None):
        self.id = doc_id
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> dict[str, Any] | None:
        return dict(self._data) if self._data is not None else None


class FakeDocument:
    def __init__(self, collection: "FakeCollection", doc_id: str):
        self.collection = collection
        self.id = doc_id

    def get(self) -> FakeSnapshot:
        return FakeSnapshot(self.id, self.collection.docs.get(self.id))

    def set(self, data: dict[str, Any]) -> None:
        self.collection.docs[self.id] = dict(data)

    def update(self, data: dict[str, Any]) -> None:
        if self.id not in self.collection.docs:
            raise KeyError(f"No document to update: {self.id}")
        self.collection.docs[self.id].update(data)

    def delete(self) -> None:
        self.collection.docs.pop(self.id, None)


class FakeQuery:
    """Supports the subset of the query API the store uses: ``==`` filters,
    ``limit`` and ``start_after``."""

    def __init__(self, collection, filters=(), limit_count=None, after_id=None):
        self.collection = collection
        self.filters = tuple(filters)
        self.limit_count = limit_count
        self.after_id = after_id

    def where(self, filter):
        assert filter.op_string == "==", "only equality filters are supported"
        condition = (filter.field_path, filter.value)
        return FakeQuery(
            self.collection, self.filters + (condition,), self.limit_count, self.after_id
        )

    def limit(self, count: int):
        return FakeQuery(self.collection, self.filters, count, self.after_id)

    def start_after(self, snapshot):
        return FakeQuery(self.collection, self.filters, self.limit_count, snapshot.id)

    def stream(self):
        matches = [
            (doc_id, data)
            for doc_id, data in self.collection.docs.items()
            if all(data.get(field) == value for field, value in self.filters)
        ]
        if self.after_id is not None:
            ids = [doc_id for doc_id, _ in matches]
            if self.after_id in ids:
                matches = matches[ids.index(self.after_id) + 1 :]
        if self.limit_count is not None:
            matches = matches[: self.limit_count]
        return iter([FakeSnapshot(doc_id, dict(data)) for doc_id, data in matches])


class FakeCollection(FakeQuery):
    def __init__(self, name: str, ids):
        self.name = name
        self.docs: dict[str, dict[str, Any]] = {}
        self._ids = ids
        super().__init__(self)

    def document(self, doc_id: str) -> FakeDocument:
        return FakeDocument(self, doc_id)

    def add(self, data: dict[str, Any]):
        doc_id = f"{self.name}-{next(self._ids)}"
        self.docs[doc_id] = dict(data)
        return None, FakeDocument(self, doc_id)


class FakeFirestore:
    """In-memory stand-in for ``google.cloud.firestore.Client``."""

    def __init__(self):
        self.collections: dict[str, FakeCollection] = {}
        self._ids = itertools.count(1)

    def collection(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name, self._ids)
        return self.collections[name]
