"""Local mirror of server objects with secondary indices."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Optional

Item = Dict[str, Any]

UNDEFINED_KEY = "undefined"


def default_key(item: Item) -> str:
    return item.get("UUID") or item.get("ref") or UNDEFINED_KEY


class Index:
    """Groups items by the value of one field: ``index[value] -> {key: item}``."""

    def __init__(self, field: str) -> None:
        self.field = field
        self._groups: Dict[Any, Dict[str, Item]] = {}
        self._values: Dict[str, Any] = {}

    def add(self, key: str, item: Item) -> None:
        self.remove(key)
        value = item.get(self.field)
        if value is None:
            return
        self._groups.setdefault(value, {})[key] = item
        self._values[key] = value

    def remove(self, key: str) -> None:
        if key not in self._values:
            return
        value = self._values.pop(key)
        group = self._groups.get(value)
        if group is None:
            return
        group.pop(key, None)
        if not group:
            del self._groups[value]

    def clear(self) -> None:
        self._groups.clear()
        self._values.clear()

    def get(self, value: Any) -> Mapping[str, Item]:
        return MappingProxyType(self._groups.get(value, {}))

    def __contains__(self, value: object) -> bool:
        return value in self._groups

    def values(self) -> Iterable[Any]:
        return list(self._groups)


class ObjectCollection(Mapping):
    """Key/value store of server objects; only the orchestrator mutates it."""

    def __init__(self, get_key: Callable[[Item], str] = default_key) -> None:
        self.get_key = get_key
        self._items: Dict[str, Item] = {}
        self._indexes: Dict[str, Index] = {}

    def create_index(self, name: str, index: Index) -> None:
        if name in self._indexes:
            raise ValueError(f"Index {name!r} already exists")
        for key, item in self._items.items():
            index.add(key, item)
        self._indexes[name] = index

    @property
    def indexes(self) -> Mapping[str, Index]:
        return MappingProxyType(self._indexes)

    def set(self, item: Item) -> None:
        key = self.get_key(item)
        self._items[key] = item
        for index in self._indexes.values():
            index.add(key, item)

    def unset(self, item: Item) -> None:
        key = self.get_key(item)
        if self._items.pop(key, None) is None:
            return
        for index in self._indexes.values():
            index.remove(key)

    def clear(self) -> None:
        self._items.clear()
        for index in self._indexes.values():
            index.clear()

    def set_many(self, items: Iterable[Item]) -> None:
        for item in items:
            self.set(item)

    def unset_many(self, items: Iterable[Item]) -> None:
        for item in items:
            self.unset(item)

    def __getitem__(self, key: str) -> Item:
        return self._items[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)


def create_object_collection() -> ObjectCollection:
    objects = ObjectCollection()
    objects.create_index("ref", Index("ref"))
    objects.create_index("type", Index("type"))
    objects.create_index("UUID", Index("UUID"))
    return objects


class ObjectsView(Mapping):
    """Read-only facade over an ``ObjectCollection``."""

    def __init__(self, collection: ObjectCollection) -> None:
        self._collection = collection

    def __getitem__(self, key: str) -> Item:
        return self._collection[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._collection)

    def __len__(self) -> int:
        return len(self._collection)

    @property
    def indexes(self) -> Mapping[str, Index]:
        return self._collection.indexes

    def by_ref(self, ref: str) -> Optional[Item]:
        group = self._collection.indexes["ref"].get(ref)
        return next(iter(group.values()), None)

    def by_uuid(self, uuid: str) -> Optional[Item]:
        group = self._collection.indexes["UUID"].get(uuid)
        return next(iter(group.values()), None)

    def by_type(self, type_: str) -> Mapping[str, Item]:
        return self._collection.indexes["type"].get(type_)

    def __repr__(self) -> str:
        return f"ObjectsView({len(self)} objects)"
