"""Certificate authorities known to sitectl and how acme.sh refers to them."""

from dataclasses import dataclass, field

from .logutil import logger

DEFAULT_PROVIDER = "letsencrypt"


@dataclass(frozen=True)
class CertificateAuthority:
    """A CA selectable with ``--server``.

    ``name`` is also the value passed to ``acme.sh --server``.
    """

    name: str
    label: str
    aliases: tuple[str, ...] = field(default_factory=tuple)
    requires_eab: bool = False
    validity_days: int = 90
    # Substrings identifying the CA's ACME directory URL
    directory_hints: tuple[str, ...] = field(default_factory=tuple)

    def matches_directory(self, text: str) -> bool:
        lowered = text.lower()
        return any(hint in lowered for hint in (self.name, *self.directory_hints))


AUTHORITIES: dict[str, CertificateAuthority] = {
    "letsencrypt": CertificateAuthority(
        name="letsencrypt", label="Let's Encrypt", aliases=("le",)
    ),
    "zerossl": CertificateAuthority(name="zerossl", label="ZeroSSL", aliases=("zero",)),
    "google": CertificateAuthority(
        name="google",
        label="Google",
        aliases=("gts", "googletrustservices"),
        requires_eab=True,
        directory_hints=("pki.goog",),
    ),
    "buypass": CertificateAuthority(
        name="buypass", label="BuyPass", aliases=("bp",), validity_days=180
    ),
}


def lookup_provider(value: str | None) -> CertificateAuthority | None:
    """Find a CA by name or alias, case-insensitively."""
    if not value:
        return None
    wanted = value.strip().lower()
    for authority in AUTHORITIES.values():
        if wanted == authority.name or wanted in authority.aliases:
            return authority
    return None


def normalize_provider(
    value: str | None, default: str | None = None
) -> tuple[CertificateAuthority, bool]:
    """Resolve a requested provider, falling back instead of failing.

    Args:
        value: Provider requested on the command line (may be None)
        default: Configured default provider

    Returns:
        The authority to use and whether a fallback happened because value
        was not recognized.
    """
    fallback = lookup_provider(default) or AUTHORITIES[DEFAULT_PROVIDER]
    if value is None or not value.strip():
        return fallback, False

    authority = lookup_provider(value)
    if authority is None:
        logger.warning("Unknown ACME server %r, using %s", value, fallback.name)
        return fallback, True
    return authority, False


def label_from_info(info: str) -> str | None:
    """Pick the CA label out of ``acme.sh --info`` output.

    acme.sh records the directory URL on the ``Le_API`` line.
    """
    for line in info.splitlines():
        if "Le_API" not in line:
            continue
        for authority in AUTHORITIES.values():
            if authority.matches_directory(line):
                return authority.label
    return None
