"""Document capability: identity and revision handling for typed and raw documents.

Two kinds of values can be exchanged with the server:

* raw envelopes, plain ``dict`` objects holding ``_id``/``_rev`` next to the
  domain fields, and
* subclasses of :class:`Document`, pydantic models whose id, revision and
  deletion marker live in private attributes instead of model fields.

Every database operation works through a :class:`DocumentAdapter`, so the
query, batch and change-feed code paths are shared by both kinds.
"""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, PrivateAttr
from pydantic import ValidationError as PydanticValidationError

from .exceptions import DecodeError

Envelope = dict[str, Any]

ID_FIELD = "_id"
REV_FIELD = "_rev"
DELETED_FIELD = "_deleted"

T = TypeVar("T")


class Document(BaseModel):
    """Base class for typed documents.

    Subclasses declare their domain fields as ordinary pydantic fields.
    Reserved CouchDB fields never appear in the model; they are carried
    alongside it and written back into the envelope on encode.

    Example:
        >>> class User(Document):
        ...     name: str
        ...     email: str
        >>> user = User(name="Alice", email="alice@example.com")
        >>> await db.save(user)
        >>> user.couch_rev
        '1-967a00dff5e02add41819138abb3284d'
    """

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    _couch_id: str | None = PrivateAttr(default=None)
    _couch_rev: str | None = PrivateAttr(default=None)
    _couch_deleted: bool = PrivateAttr(default=False)

    @property
    def couch_id(self) -> str | None:
        return self._couch_id

    @property
    def couch_rev(self) -> str | None:
        return self._couch_rev

    @property
    def couch_deleted(self) -> bool:
        return self._couch_deleted


D = TypeVar("D", bound=Document)


class DocumentAdapter(Generic[T]):
    """Maps values of one document type to and from envelopes."""

    document_type: type

    def to_envelope(self, value: T) -> Envelope:
        raise NotImplementedError

    def from_envelope(self, envelope: Any) -> T:
        raise NotImplementedError

    def get_id(self, value: T) -> str | None:
        raise NotImplementedError

    def set_id(self, value: T, doc_id: str) -> None:
        raise NotImplementedError

    def get_rev(self, value: T) -> str | None:
        raise NotImplementedError

    def set_rev(self, value: T, rev: str) -> None:
        raise NotImplementedError

    def is_deleted(self, value: T) -> bool:
        raise NotImplementedError

    def set_deleted(self, value: T, deleted: bool = True) -> None:
        raise NotImplementedError


class EnvelopeAdapter(DocumentAdapter[Envelope]):
    """Identity mapping for raw ``dict`` documents.

    Unknown fields, attachments stubs and any other underscore field the
    server returns are kept as-is.
    """

    document_type = dict

    def to_envelope(self, value: Envelope) -> Envelope:
        if not isinstance(value, dict):
            raise TypeError(f"Expected a dict document, got {type(value).__name__}")
        return dict(value)

    def from_envelope(self, envelope: Any) -> Envelope:
        if not isinstance(envelope, dict):
            raise DecodeError(
                f"Expected a JSON object, got {type(envelope).__name__}",
                operation="decode",
            )
        return envelope

    def get_id(self, value: Envelope) -> str | None:
        return value.get(ID_FIELD) or None

    def set_id(self, value: Envelope, doc_id: str) -> None:
        value[ID_FIELD] = doc_id

    def get_rev(self, value: Envelope) -> str | None:
        return value.get(REV_FIELD) or None

    def set_rev(self, value: Envelope, rev: str) -> None:
        value[REV_FIELD] = rev

    def is_deleted(self, value: Envelope) -> bool:
        return bool(value.get(DELETED_FIELD, False))

    def set_deleted(self, value: Envelope, deleted: bool = True) -> None:
        if deleted:
            value[DELETED_FIELD] = True
        else:
            value.pop(DELETED_FIELD, None)


class ModelAdapter(DocumentAdapter[D]):
    """Maps :class:`Document` subclasses to envelopes."""

    def __init__(self, document_type: type[D]):
        self.document_type = document_type

    def to_envelope(self, value: D) -> Envelope:
        envelope: Envelope = {}
        if value._couch_id:
            envelope[ID_FIELD] = value._couch_id
        if value._couch_rev:
            envelope[REV_FIELD] = value._couch_rev
        if value._couch_deleted:
            envelope[DELETED_FIELD] = True
        envelope.update(value.model_dump(mode="json", by_alias=True))
        return envelope

    def from_envelope(self, envelope: Any) -> D:
        if not isinstance(envelope, dict):
            raise DecodeError(
                f"Expected a JSON object, got {type(envelope).__name__}",
                operation="decode",
            )
        doc_id = envelope.get(ID_FIELD)
        fields = {k: v for k, v in envelope.items() if not k.startswith("_")}
        try:
            value = self.document_type.model_validate(fields)
        except PydanticValidationError as e:
            raise DecodeError(
                f"Cannot decode {self.document_type.__name__}: {e}",
                operation="decode",
                doc_id=doc_id,
            ) from e
        value._couch_id = doc_id
        value._couch_rev = envelope.get(REV_FIELD)
        value._couch_deleted = bool(envelope.get(DELETED_FIELD, False))
        return value

    def get_id(self, value: D) -> str | None:
        return value._couch_id

    def set_id(self, value: D, doc_id: str) -> None:
        value._couch_id = doc_id

    def get_rev(self, value: D) -> str | None:
        return value._couch_rev

    def set_rev(self, value: D, rev: str) -> None:
        value._couch_rev = rev

    def is_deleted(self, value: D) -> bool:
        return value._couch_deleted

    def set_deleted(self, value: D, deleted: bool = True) -> None:
        value._couch_deleted = deleted


_ENVELOPE_ADAPTER = EnvelopeAdapter()


def adapter_for(document_type: type | None) -> DocumentAdapter[Any]:
    """Return the adapter for a document type (``None`` or ``dict`` for raw)."""
    if document_type is None or document_type is dict:
        return _ENVELOPE_ADAPTER
    if isinstance(document_type, type) and issubclass(document_type, Document):
        return ModelAdapter(document_type)
    raise TypeError(
        f"Unsupported document type {document_type!r}: use dict or a Document subclass"
    )


def adapter_of(value: Any) -> DocumentAdapter[Any]:
    """Return the adapter matching a document instance."""
    if isinstance(value, Document):
        return ModelAdapter(type(value))
    if isinstance(value, dict):
        return _ENVELOPE_ADAPTER
    raise TypeError(f"Unsupported document value of type {type(value).__name__}")


def get_id(value: Any) -> str | None:
    return adapter_of(value).get_id(value)


def set_id(value: Any, doc_id: str) -> None:
    adapter_of(value).set_id(value, doc_id)


def get_rev(value: Any) -> str | None:
    return adapter_of(value).get_rev(value)


def set_rev(value: Any, rev: str) -> None:
    adapter_of(value).set_rev(value, rev)


def is_deleted(value: Any) -> bool:
    return adapter_of(value).is_deleted(value)


def mark_deleted(value: Any, deleted: bool = True) -> None:
    """Flag a document for deletion in the next bulk submission."""
    adapter_of(value).set_deleted(value, deleted)
