"""Query builders for Mango ``_find`` queries and view queries."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


SortSpec = str | dict[str, str]


def _sort_entry(spec: Any) -> SortSpec:
    if isinstance(spec, str):
        return spec
    if isinstance(spec, tuple) and len(spec) == 2:
        name, direction = spec
        return {name: SortDirection(direction).value}
    if isinstance(spec, dict) and len(spec) == 1:
        ((name, direction),) = spec.items()
        return {name: SortDirection(direction).value}
    raise ValueError(f"Invalid sort spec: {spec!r}")


@dataclass(frozen=True)
class FindQuery:
    """A Mango query for the ``_find`` endpoint.

    Every ``with_*`` method returns a new query; building never touches the
    network. The bookmark must come from a previous :class:`ResultPage`.

    Example:
        >>> query = (
        ...     FindQuery.find_all()
        ...     .with_selector({"status": "active"})
        ...     .with_sort([("name", "asc")])
        ...     .with_limit(25)
        ... )
        >>> query.to_body()
        {'selector': {'status': 'active'}, 'limit': 25, 'sort': [{'name': 'asc'}]}
    """

    selector: dict[str, Any] = field(default_factory=dict)
    limit: int | None = None
    skip: int | None = None
    sort: tuple[SortSpec, ...] = ()
    fields: tuple[str, ...] | None = None
    use_index: str | tuple[str, str] | None = None
    bookmark: str | None = None
    r: int | None = None
    update: bool | None = None
    stable: bool | None = None
    execution_stats: bool | None = None

    @classmethod
    def find_all(cls) -> "FindQuery":
        """Query matching every non-design document."""
        return cls(selector={"_id": {"$ne": None}})

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> "FindQuery":
        """Build a query from a ``_find`` request body."""
        fields = body.get("fields")
        use_index = body.get("use_index")
        if isinstance(use_index, list):
            use_index = tuple(use_index)
        return cls(
            selector=body.get("selector", {}),
            limit=body.get("limit"),
            skip=body.get("skip"),
            sort=tuple(_sort_entry(s) for s in body.get("sort", [])),
            fields=tuple(fields) if fields is not None else None,
            use_index=use_index,
            bookmark=body.get("bookmark"),
            r=body.get("r"),
            update=body.get("update"),
            stable=body.get("stable"),
            execution_stats=body.get("execution_stats"),
        )

    def with_selector(self, selector: dict[str, Any]) -> "FindQuery":
        return replace(self, selector=dict(selector))

    def with_sort(self, sort: list[Any]) -> "FindQuery":
        """Set sort order.

        Accepts field names, ``(field, direction)`` pairs or
        ``{field: direction}`` mappings, in priority order.
        """
        return replace(self, sort=tuple(_sort_entry(s) for s in sort))

    def with_limit(self, limit: int | None) -> "FindQuery":
        if limit is not None and limit < 0:
            raise ValueError("limit must not be negative")
        return replace(self, limit=limit)

    def with_skip(self, skip: int | None) -> "FindQuery":
        if skip is not None and skip < 0:
            raise ValueError("skip must not be negative")
        return replace(self, skip=skip)

    def with_fields(self, fields: list[str] | None) -> "FindQuery":
        return replace(self, fields=tuple(fields) if fields is not None else None)

    def with_index(self, design_doc: str, name: str | None = None) -> "FindQuery":
        use_index = (design_doc, name) if name else design_doc
        return replace(self, use_index=use_index)

    def with_bookmark(self, bookmark: str | None) -> "FindQuery":
        return replace(self, bookmark=bookmark)

    def to_body(self) -> dict[str, Any]:
        """Serialize to the JSON body ``_find`` expects."""
        body: dict[str, Any] = {"selector": self.selector}
        if self.limit is not None:
            body["limit"] = self.limit
        if self.skip is not None:
            body["skip"] = self.skip
        if self.sort:
            body["sort"] = list(self.sort)
        if self.fields is not None:
            body["fields"] = list(self.fields)
        if self.use_index is not None:
            body["use_index"] = (
                list(self.use_index) if isinstance(self.use_index, tuple) else self.use_index
            )
        if self.r is not None:
            body["r"] = self.r
        if self.bookmark is not None:
            body["bookmark"] = self.bookmark
        if self.update is not None:
            body["update"] = self.update
        if self.stable is not None:
            body["stable"] = self.stable
        if self.execution_stats is not None:
            body["execution_stats"] = self.execution_stats
        return body


class UpdateView(str, Enum):
    TRUE = "true"
    FALSE = "false"
    LAZY = "lazy"


_VIEW_PARAMS = (
    "conflicts",
    "descending",
    "end_key",
    "end_key_doc_id",
    "group",
    "group_level",
    "include_docs",
    "attachments",
    "att_encoding_info",
    "inclusive_end",
    "key",
    "keys",
    "limit",
    "reduce",
    "skip",
    "sorted",
    "stable",
    "start_key",
    "start_key_doc_id",
    "update",
    "update_seq",
)


@dataclass
class ViewQuery:
    """Parameters for view, ``_all_docs`` and ``queries`` requests.

    Keys (``key``, ``keys``, ``start_key``, ``end_key``) are sent verbatim as
    JSON, so strings, numbers and composite array keys all work.
    An empty ``keys`` list is sent as well and matches no rows.
    """

    conflicts: bool | None = None
    descending: bool | None = None
    end_key: Any = None
    end_key_doc_id: str | None = None
    group: bool | None = None
    group_level: int | None = None
    include_docs: bool | None = None
    attachments: bool | None = None
    att_encoding_info: bool | None = None
    inclusive_end: bool | None = None
    key: Any = None
    keys: list[Any] | None = None
    limit: int | None = None
    reduce: bool | None = None
    skip: int | None = None
    sorted: bool | None = None
    stable: bool | None = None
    start_key: Any = None
    start_key_doc_id: str | None = None
    update: UpdateView | None = None
    update_seq: bool | None = None

    @classmethod
    def from_keys(cls, keys: list[Any]) -> "ViewQuery":
        return cls(keys=list(keys))

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        for name in _VIEW_PARAMS:
            value = getattr(self, name)
            if value is None:
                continue
            if name == "keys":
                body[name] = list(value)
                continue
            body[name] = value.value if isinstance(value, Enum) else value
        return body
