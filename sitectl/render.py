"""
Rendering of nginx site configurations and the sample landing page.

Every function here is pure: identical arguments always produce
byte-identical text. The certificate engine re-renders a site in place on
each TLS state change and relies on that.
"""

from collections.abc import Sequence
from dataclasses import dataclass

from .domains import apex_domain, is_valid_domain
from .types import ConfigRenderError

FULLCHAIN_FILE = "fullchain.cer"
ACME_CHALLENGE_PATH = "/.well-known/acme-challenge/"
HTTP_PORT = 80
HTTPS_PORT = 443

TLS_PROTOCOLS = "TLSv1.2 TLSv1.3"
TLS_CIPHERS = "HIGH:!aNULL:!MD5"
SECURITY_HEADERS: tuple[tuple[str, str], ...] = (
    ("Strict-Transport-Security", "max-age=31536000; includeSubDomains"),
    ("X-Frame-Options", "SAMEORIGIN"),
    ("X-Content-Type-Options", "nosniff"),
    ("X-XSS-Protection", "1; mode=block"),
)


@dataclass(frozen=True)
class ServerPaths:
    """Directory roots as nginx sees them (inside the container, if any)."""

    html_dir: str = "/var/www"
    log_dir: str = "/var/log/nginx"
    cert_dir: str = "/etc/nginx/certs"


def key_file_name(domain: str) -> str:
    return f"{domain}.key"


def server_name_list(
    domain: str, server_names: Sequence[str] = (), wildcard: bool = False
) -> list[str]:
    """Primary domain, then additional names in caller order, then ``*.domain``."""
    names = [domain]
    for name in server_names:
        if name not in names:
            names.append(name)
    if wildcard and f"*.{domain}" not in names:
        names.append(f"*.{domain}")
    return names


def _check_names(names: Sequence[str]) -> None:
    for name in names:
        if not is_valid_domain(name, allow_wildcard=True):
            raise ConfigRenderError(f"Invalid server name: {name!r}")


def _listen_lines(port: int, ssl: bool = False) -> list[str]:
    suffix = " ssl" if ssl else ""
    return [f"    listen {port}{suffix};", f"    listen [::]:{port}{suffix};"]


def _challenge_location(domain: str, paths: ServerPaths) -> list[str]:
    return [
        "    # ACME certificate validation path",
        f"    location ^~ {ACME_CHALLENGE_PATH} {{",
        f"        root {paths.html_dir}/{domain};",
        "        try_files $uri =404;",
        "    }",
    ]


def _document_root(domain: str, paths: ServerPaths) -> list[str]:
    return [
        f"    root {paths.html_dir}/{domain};",
        "    index index.html index.htm index.php;",
    ]


def _static_location() -> list[str]:
    return [
        "    location / {",
        "        try_files $uri $uri/ =404;",
        "    }",
    ]


def _log_lines(domain: str, paths: ServerPaths) -> list[str]:
    return [
        "    # Logs",
        f"    access_log {paths.log_dir}/{domain}/access.log;",
        f"    error_log {paths.log_dir}/{domain}/error.log;",
    ]


def _http_only_block(domain: str, paths: ServerPaths) -> list[str]:
    return [
        "# HTTP Configuration",
        "server {",
        *_listen_lines(HTTP_PORT),
        f"    server_name {domain};",
        "",
        *_document_root(domain, paths),
        "",
        *_challenge_location(domain, paths),
        "",
        "    # Temporary HTTP access (redirects to HTTPS once SSL is enabled)",
        *_static_location(),
        "",
        *_log_lines(domain, paths),
        "}",
    ]


def _redirect_block(domain: str, names: Sequence[str], paths: ServerPaths) -> list[str]:
    return [
        "# HTTP Configuration (redirect to HTTPS)",
        "server {",
        *_listen_lines(HTTP_PORT),
        f"    server_name {' '.join(names)};",
        "",
        *_challenge_location(domain, paths),
        "",
        "    # Redirect to HTTPS",
        "    location / {",
        "        return 301 https://$host$request_uri;",
        "    }",
        "",
        *_log_lines(domain, paths),
        "}",
    ]


def _tls_block(
    domain: str, names: Sequence[str], paths: ServerPaths, wildcard_linked: bool
) -> list[str]:
    cert_dir = f"{paths.cert_dir}/{domain}"
    if wildcard_linked:
        cert_comment = (
            f"    # SSL Certificate (wildcard certificate linked from "
            f"{apex_domain(domain)})"
        )
    else:
        cert_comment = "    # SSL Certificate"

    return [
        "# HTTPS Configuration",
        "server {",
        *_listen_lines(HTTPS_PORT, ssl=True),
        "    http2 on;",
        f"    server_name {' '.join(names)};",
        "",
        cert_comment,
        f"    ssl_certificate {cert_dir}/{FULLCHAIN_FILE};",
        f"    ssl_certificate_key {cert_dir}/{key_file_name(domain)};",
        "",
        "    # SSL Optimization",
        f"    ssl_protocols {TLS_PROTOCOLS};",
        f"    ssl_ciphers {TLS_CIPHERS};",
        "    ssl_prefer_server_ciphers on;",
        "    ssl_session_cache shared:SSL:10m;",
        "    ssl_session_timeout 10m;",
        "",
        "    # Security Headers",
        *(f'    add_header {name} "{value}" always;' for name, value in SECURITY_HEADERS),
        "",
        *_document_root(domain, paths),
        "",
        *_static_location(),
        "",
        *_log_lines(domain, paths),
        "}",
    ]


def render_site_config(
    domain: str,
    server_names: Sequence[str] = (),
    secured: bool = False,
    wildcard_linked: bool = False,
    wildcard: bool = False,
    paths: ServerPaths | None = None,
) -> str:
    """Render the nginx configuration for a site.

    Args:
        domain: Primary domain, also used for every filesystem path
        server_names: Additional names, listed after the domain in this order
        secured: False renders a single HTTP block for the domain only;
            True renders the HTTP redirect block plus the HTTPS block
        wildcard_linked: The certificate files are links into the apex's
            certificate directory
        wildcard: Append ``*.domain`` to the server names
        paths: Server-side directory roots

    Raises:
        ConfigRenderError: If any name is not a valid domain name
    """
    paths = paths or ServerPaths()
    names = server_name_list(domain, server_names, wildcard)
    _check_names(names)

    if not secured:
        lines = _http_only_block(domain, paths)
    else:
        lines = [
            *_redirect_block(domain, names, paths),
            "",
            *_tls_block(domain, names, paths, wildcard_linked),
        ]
    return "\n".join(lines) + "\n"


LANDING_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Welcome to {domain}</title>
    <style>
        body {{
            font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif;
            max-width: 800px;
            margin: 100px auto;
            padding: 20px;
            text-align: center;
            background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
            color: white;
        }}
        .container {{
            background: rgba(255, 255, 255, 0.1);
            padding: 40px;
            border-radius: 10px;
            backdrop-filter: blur(10px);
        }}
        h1 {{ font-size: 3em; margin-bottom: 20px; }}
        p {{ font-size: 1.2em; line-height: 1.6; }}
        .status {{ color: #90EE90; font-weight: bold; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>Welcome to {domain}</h1>
        <p class="status">✓ Site is running successfully!</p>
    </div>
</body>
</html>
"""


def render_landing_page(domain: str) -> str:
    """Render the sample index page written for a new site."""
    return LANDING_PAGE_TEMPLATE.format(domain=domain)
