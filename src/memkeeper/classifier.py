"""Mapping of processes to application families."""

from dataclasses import dataclass

from memkeeper.models import ProcessRecord

DEFAULT_ICON = "app"
DEFAULT_COLOR = "gray"
HELPER_MARKER = " Helper"


@dataclass(slots=True, frozen=True)
class Signature:
    """A known application family and the name fragments that identify it."""

    key: str
    patterns: tuple[str, ...]  # lower-case substrings
    icon: str
    color: str
    keeps_children: bool = False  # many legitimate concurrent children (tabs)

    def matches(self, name: str) -> bool:
        """Case-insensitive substring match against a raw process name."""
        lowered = name.lower()
        return any(pattern in lowered for pattern in self.patterns)


# Evaluated top to bottom, first match wins. A name that mentions more than
# one vendor belongs to whichever signature is listed first.
SIGNATURES: tuple[Signature, ...] = (
    Signature("Claude", ("claude",), icon="terminal", color="orange"),
    Signature("Chrome", ("chrome",), icon="globe", color="blue", keeps_children=True),
    Signature("Safari", ("safari", "webkit"), icon="compass", color="cyan", keeps_children=True),
    Signature("Xcode", ("xcode", "sourcekit"), icon="hammer", color="blue"),
    Signature("Docker", ("docker",), icon="shippingbox", color="blue"),
)

_BY_KEY = {signature.key: signature for signature in SIGNATURES}


def match_signature(record: ProcessRecord) -> Signature | None:
    """First signature matching the record's name, if any."""
    for signature in SIGNATURES:
        if signature.matches(record.name):
            return signature
    return None


def classify(record: ProcessRecord) -> str:
    """
    Family key for a process.

    Known applications map to their signature key. Otherwise a name such as
    ``Slack Helper (Renderer)`` maps to the text before the helper marker,
    and anything else is its own family named after the display name.
    """
    signature = match_signature(record)
    if signature is not None:
        return signature.key

    name = record.display_name
    if "Helper" in name:
        return name.split(HELPER_MARKER, 1)[0]
    return name


def signature_for(key: str) -> Signature | None:
    """Signature registered under a family key."""
    return _BY_KEY.get(key)


def is_member(record: ProcessRecord, key: str) -> bool:
    """Whether the record matches the signature of a known family."""
    signature = _BY_KEY.get(key)
    if signature is None:
        return classify(record) == key
    return signature.matches(record.name)


def family_icon(key: str) -> str:
    """Icon name for a family key."""
    signature = _BY_KEY.get(key)
    return signature.icon if signature else DEFAULT_ICON


def family_color(key: str) -> str:
    """Accent color for a family key."""
    signature = _BY_KEY.get(key)
    return signature.color if signature else DEFAULT_COLOR


def keeps_children(key: str) -> bool:
    """Whether a family legitimately runs many concurrent children."""
    signature = _BY_KEY.get(key)
    return signature.keeps_children if signature else False
