"""
sitectl - manage nginx sites and their TLS certificates.

Works with nginx and acme.sh running either as Docker containers or as
host installations.
"""

__version__ = "0.1.0"
