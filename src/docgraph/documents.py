"""
Document attributes: schema, kinds, validation and index contributions.

Documents are stored as canonical JSON objects. A handful of attributes
have a fixed meaning (author, date, type, at, tags, content); anything else
is kept as-is. Each document kind lists the validators that apply to it:

    >>> errors({"type": "issue", "author": "Jane <jane@example.com>",
    ...         "date": "2024-01-02T03:04:05+00:00"})
    {'title': 'nothing specified'}
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidDocumentError

AUTHOR_PATTERN = re.compile(r"\A(?P<name>.*?)\s*<(?P<email>.*?)>\s*\Z")
DATE_PATTERN = re.compile(r"\A\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d(?:Z|[+-]\d\d:\d\d)\Z")
SHA_PATTERN = re.compile(r"\A[0-9a-f]{40}\Z")
DOCUMENT_PATH_PATTERN = re.compile(r"\A(\d{4})/(\d{4})/([0-9a-f]{40})\Z")

DEFAULT_KIND = "document"

Validator = Callable[[str, Any], Optional[str]]


class Document(BaseModel):
    """Typed view of a document's attributes.

    Unknown attributes are preserved in ``model_extra``.
    """

    model_config = ConfigDict(extra="allow")

    author: Optional[str] = None
    date: Optional[str] = None
    type: Optional[str] = None
    at: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    content: Optional[str] = None

    @classmethod
    def from_attrs(cls, attrs: Mapping[str, Any]) -> "Document":
        return cls.model_validate(dict(attrs))

    def to_attrs(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)

    @property
    def email(self) -> Optional[str]:
        return parse_email(self.author)

    @property
    def timestamp(self) -> Optional[datetime]:
        return parse_date(self.date)


#
# validators
#


def parse_date(value: Any) -> Optional[datetime]:
    """Return the datetime of an ISO 8601 date attribute, or None."""
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def validate_author(key: str, value: Any) -> Optional[str]:
    if value is None:
        return "missing"
    if not isinstance(value, str) or not AUTHOR_PATTERN.match(value):
        return "misformatted"
    return None


def validate_date(key: str, value: Any) -> Optional[str]:
    if value is None:
        return "missing"
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        return "misformatted"
    return None


def validate_sha_or_none(key: str, value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str) or not SHA_PATTERN.match(value):
        return "misformatted"
    return None


def validate_list_or_none(key: str, value: Any) -> Optional[str]:
    if value is None or isinstance(value, list):
        return None
    return "not an array"


def validate_not_blank(key: str, value: Any) -> Optional[str]:
    return "nothing specified" if _is_blank(value) else None


ISSUE_STATES = ("open", "closed", "resolved", "wontfix")


def validate_state(key: str, value: Any) -> Optional[str]:
    if value is None:
        return "missing"
    if value not in ISSUE_STATES:
        return f"unknown state: {value}"
    return None


BASE_VALIDATORS: Tuple[Tuple[str, Validator], ...] = (
    ("author", validate_author),
    ("date", validate_date),
    ("at", validate_sha_or_none),
    ("tags", validate_list_or_none),
)


@dataclass(frozen=True)
class DocumentKind:
    """A document type: its validators and default attributes."""

    name: str
    validators: Tuple[Tuple[str, Validator], ...] = BASE_VALIDATORS
    defaults: Mapping[str, Any] = field(default_factory=dict)


KINDS: Dict[str, DocumentKind] = {
    "document": DocumentKind("document"),
    "issue": DocumentKind(
        "issue",
        BASE_VALIDATORS + (("title", validate_not_blank), ("state", validate_state)),
        {"state": "open"},
    ),
    "comment": DocumentKind(
        "comment", BASE_VALIDATORS + (("content", validate_not_blank),)
    ),
}


def kind_of(attrs: Mapping[str, Any]) -> DocumentKind:
    """Return the registered kind for attrs['type'] (default: document).

    Raises:
        InvalidDocumentError: For an unregistered type
    """
    name = attrs.get("type") or DEFAULT_KIND
    kind = KINDS.get(name)
    if kind is None:
        raise InvalidDocumentError({"type": f"unknown type: {name}"})
    return kind


def errors(attrs: Mapping[str, Any]) -> Dict[str, str]:
    """Return {key: message} for every failing validator."""
    result = {}
    for key, validator in kind_of(attrs).validators:
        message = validator(key, attrs.get(key))
        if message:
            result[key] = message
    return result


def validate(attrs: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return attrs unchanged, or raise InvalidDocumentError."""
    found = errors(attrs)
    if found:
        raise InvalidDocumentError(found)
    return attrs


def _arrayify(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if value is None:
        return []
    if isinstance(value, str):
        return [] if not value.strip() else [value]
    return [value]


def normalize(
    attrs: Mapping[str, Any],
    author: str,
    kind: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Return a copy of attrs with author, date, type, defaults and tags filled in."""
    result = dict(attrs)

    if not result.get("author"):
        result["author"] = author

    if not result.get("date"):
        now = now or datetime.now(timezone.utc)
        result["date"] = now.astimezone(timezone.utc).isoformat(timespec="seconds")

    if kind and not result.get("type"):
        result["type"] = kind

    if "tags" in result:
        result["tags"] = _arrayify(result["tags"])

    for key, value in kind_of(result).defaults.items():
        result.setdefault(key, value)

    return result


#
# serialization
#


def serialize(attrs: Mapping[str, Any]) -> bytes:
    """Return the canonical JSON bytes for attrs (the blob content)."""
    return json.dumps(
        attrs, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def deserialize(data: Optional[bytes]) -> Optional[Dict[str, Any]]:
    """Return the attributes encoded in data, or None if it is not a document."""
    if not data:
        return None
    try:
        attrs = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return attrs if isinstance(attrs, dict) else None


def document_path(sha: str, date: datetime) -> str:
    """Return the registry path ``YYYY/MMDD/sha`` for a document stored at date."""
    date = date.astimezone(timezone.utc) if date.tzinfo else date
    return f"{date:%Y}/{date:%m%d}/{sha}"


def parse_document_path(path: str) -> Optional[str]:
    """Return the sha registered at a ``YYYY/MMDD/sha`` path, or None."""
    match = DOCUMENT_PATH_PATTERN.match(path)
    return match.group(3) if match else None


#
# indexing
#


def parse_email(author: Optional[str]) -> Optional[str]:
    if not author:
        return None
    match = AUTHOR_PATTERN.match(author)
    return match.group("email") if match else None


def index_entries(attrs: Mapping[str, Any]) -> Iterator[Tuple[str, str]]:
    """Yield the (key, value) filters a document contributes to the index."""
    author = attrs.get("author")
    if author:
        email = parse_email(author)
        yield "email", email if not _is_blank(email) else "unknown"

    date = attrs.get("date")
    if isinstance(date, str) and len(date) >= 10:
        yield "date", f"{date[0:4]}{date[5:7]}{date[8:10]}"

    at = attrs.get("at")
    if at:
        yield "at", str(at)

    for tag in _arrayify(attrs.get("tags")):
        if not _is_blank(tag):
            yield "tags", str(tag)

    doc_type = attrs.get("type")
    if doc_type:
        yield "type", str(doc_type)
