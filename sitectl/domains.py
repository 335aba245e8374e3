"""Domain name helpers shared by the registry and the certificate engine."""

import re

_LABEL_RE = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")


def normalize_domain(value: str) -> str:
    return value.strip().lower().rstrip(".")


def is_valid_label(label: str) -> bool:
    return bool(_LABEL_RE.match(label))


def is_valid_domain(value: str, allow_wildcard: bool = False) -> bool:
    """Check that value is a fully-qualified name safe to use in paths and configs."""
    domain = normalize_domain(value)
    if allow_wildcard and domain.startswith("*."):
        domain = domain[2:]
    labels = domain.split(".")
    if len(labels) < 2 or len(domain) > 253:
        return False
    return all(is_valid_label(label) for label in labels)


def apex_domain(domain: str) -> str:
    """Return the registered (apex) domain, e.g. api.example.com -> example.com.

    Uses the last two labels, so multi-part public suffixes such as
    ``co.uk`` are not recognized.
    """
    labels = normalize_domain(domain).split(".")
    return ".".join(labels[-2:])


def is_subordinate(domain: str) -> bool:
    """True when domain sits below its apex (api.example.com, not example.com)."""
    return normalize_domain(domain) != apex_domain(domain)


def covered_by_wildcard(name: str, apex: str) -> bool:
    """True when ``*.apex`` covers name (exactly one label below apex)."""
    suffix = f".{apex}"
    if not name.endswith(suffix):
        return False
    head = name[: -len(suffix)]
    return bool(head) and "." not in head
