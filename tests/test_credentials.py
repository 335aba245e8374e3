"""Tests for DNS and EAB credential collection."""

from unittest.mock import patch

import pytest

from sitectl.credentials import (
    CredentialCollector,
    CredentialError,
    DnsCredentials,
    EabCredentials,
    EnvironmentCredentialSource,
    PromptCredentialSource,
    dns_from_env,
    eab_from_env,
)
from sitectl.providers import AUTHORITIES
from sitectl.types import Error, ErrorKind, Success

LETSENCRYPT = AUTHORITIES["letsencrypt"]
GOOGLE = AUTHORITIES["google"]


class StaticSource(EnvironmentCredentialSource):
    """Hands out fixed credentials and counts how often it was asked."""

    def __init__(self) -> None:
        self.asked: list[str] = []

    def dns_credentials(self) -> DnsCredentials:
        self.asked.append("dns")
        return DnsCredentials(token="tok-123")

    def eab_credentials(self, authority: object) -> EabCredentials:
        self.asked.append("eab")
        return EabCredentials(kid="kid-1", hmac_key="hmac-1")


def test_dns_from_env_prefers_token() -> None:
    env = {"CF_Token": "tok", "CF_Email": "a@b.c", "CF_Key": "k"}
    creds = dns_from_env(env)
    assert creds == DnsCredentials(token="tok")
    assert creds.method == "API Token"


def test_dns_from_env_global_key() -> None:
    creds = dns_from_env({"CF_Email": "a@b.c", "CF_Key": "k"})
    assert creds is not None
    assert creds.method == "Global API Key"
    assert creds.as_env() == {"CF_Email": "a@b.c", "CF_Key": "k"}


def test_dns_from_env_incomplete() -> None:
    assert dns_from_env({"CF_Email": "a@b.c"}) is None
    assert dns_from_env({"CF_Token": ""}) is None


def test_eab_from_env() -> None:
    assert eab_from_env({"GOOGLE_EAB_KID": "k"}) is None
    assert eab_from_env(
        {"GOOGLE_EAB_KID": "k", "GOOGLE_EAB_HMAC_KEY": "h"}
    ) == EabCredentials(kid="k", hmac_key="h")


def test_ensure_nothing_needed() -> None:
    source = StaticSource()
    collector = CredentialCollector(source, env={})
    assert isinstance(collector.ensure(LETSENCRYPT, wildcard=False), Success)
    assert source.asked == []


def test_ensure_uses_existing_environment() -> None:
    source = StaticSource()
    env = {"CF_Token": "already-set"}
    collector = CredentialCollector(source, env=env)

    assert isinstance(collector.ensure(LETSENCRYPT, wildcard=True), Success)
    assert source.asked == []
    assert env == {"CF_Token": "already-set"}


def test_ensure_exports_collected_values() -> None:
    source = StaticSource()
    env: dict[str, str] = {}
    collector = CredentialCollector(source, env=env)

    assert isinstance(collector.ensure(GOOGLE, wildcard=True), Success)
    assert source.asked == ["dns", "eab"]
    assert env == {
        "CF_Token": "tok-123",
        "GOOGLE_EAB_KID": "kid-1",
        "GOOGLE_EAB_HMAC_KEY": "hmac-1",
    }

    # A second issuance in the same process finds them in the environment
    assert isinstance(collector.ensure(GOOGLE, wildcard=True), Success)
    assert source.asked == ["dns", "eab"]


def test_environment_source_fails_without_values() -> None:
    collector = CredentialCollector(EnvironmentCredentialSource(), env={})

    result = collector.ensure(LETSENCRYPT, wildcard=True)
    assert isinstance(result, Error)
    assert result.kind == ErrorKind.PRECONDITION
    assert "CF_Token" in result.error

    result = collector.ensure(GOOGLE, wildcard=False)
    assert isinstance(result, Error)
    assert "GOOGLE_EAB_KID" in result.error


def test_eab_arguments() -> None:
    env = {"GOOGLE_EAB_KID": "kid-1", "GOOGLE_EAB_HMAC_KEY": "hmac-1"}
    collector = CredentialCollector(EnvironmentCredentialSource(), env=env)

    assert collector.eab_arguments(GOOGLE) == [
        "--eab-kid",
        "kid-1",
        "--eab-hmac-key",
        "hmac-1",
    ]
    assert collector.eab_arguments(LETSENCRYPT) == []


def test_prompt_source_api_token() -> None:
    with patch("sitectl.credentials.click.prompt") as mock_prompt:
        mock_prompt.side_effect = ["1", "  tok-abc  "]
        creds = PromptCredentialSource().dns_credentials()

    assert creds == DnsCredentials(token="tok-abc")
    assert mock_prompt.call_args.kwargs["hide_input"] is True


def test_prompt_source_global_key() -> None:
    with patch("sitectl.credentials.click.prompt") as mock_prompt:
        mock_prompt.side_effect = ["2", "me@example.com", "global-key"]
        creds = PromptCredentialSource().dns_credentials()

    assert creds == DnsCredentials(email="me@example.com", key="global-key")
    assert mock_prompt.call_args.kwargs["hide_input"] is True


def test_prompt_source_rejects_empty_token() -> None:
    with patch("sitectl.credentials.click.prompt") as mock_prompt:
        mock_prompt.side_effect = ["1", ""]
        with pytest.raises(CredentialError, match="cannot be empty"):
            PromptCredentialSource().dns_credentials()


def test_prompt_source_eab() -> None:
    with patch("sitectl.credentials.click.prompt") as mock_prompt:
        mock_prompt.side_effect = ["kid-9", "hmac-9"]
        creds = PromptCredentialSource().eab_credentials(GOOGLE)

    assert creds == EabCredentials(kid="kid-9", hmac_key="hmac-9")


def test_prompt_failure_becomes_error_result() -> None:
    with patch("sitectl.credentials.click.prompt") as mock_prompt:
        mock_prompt.side_effect = ["", ""]
        collector = CredentialCollector(PromptCredentialSource(), env={})
        result = collector.ensure(GOOGLE, wildcard=False)

    assert isinstance(result, Error)
    assert result.error == "EAB credentials cannot be empty"
