"""Tests for acmerenew.validation.filesystem."""

from __future__ import annotations

import pytest

import support
from acmerenew.ca.base import Authorization
from acmerenew.core.errors import ConfigurationError, ValidationFailure
from acmerenew.core.identifiers import DnsIdentifier
from acmerenew.core.types import AuthorizationStatus, ChallengeType
from acmerenew.models.renewal import PluginOptions
from acmerenew.validation.base import ValidationContext
from acmerenew.validation.filesystem import FileSystemValidator


def _context(value):
    authz = Authorization(
        identifier=DnsIdentifier(value),
        status=AuthorizationStatus.PENDING,
        challenges=support.challenges_for(value),
    )
    return ValidationContext(authz.identifier, authz), authz.challenge(ChallengeType.HTTP_01)


def test_writes_and_removes_file(tmp_path, settings_factory):
    webroot = tmp_path / "www"
    settings = settings_factory(validation={"http": {"path": str(webroot), "preflight": False}})
    validator = FileSystemValidator(None, support.plugin_context(settings))
    ctx, challenge = _context("www.example.com")
    validator.prepare_challenge(ctx, challenge)
    written = webroot / ".well-known" / "acme-challenge" / challenge.token
    assert written.read_text(encoding="ascii") == challenge.key_authorization
    validator.cleanup()
    assert not written.exists()


def test_option_overrides_path(tmp_path, settings_factory):
    validator = FileSystemValidator(
        PluginOptions("filesystem", {"path": str(tmp_path / "site"), "preflight": False}),
        support.plugin_context(settings_factory()),
    )
    ctx, challenge = _context("a.example")
    validator.prepare_challenge(ctx, challenge)
    assert (tmp_path / "site" / ".well-known" / "acme-challenge" / challenge.token).is_file()
    validator.cleanup()


def test_requires_path(settings_factory):
    with pytest.raises(ConfigurationError, match="path"):
        FileSystemValidator(None, support.plugin_context(settings_factory()))


def test_unwritable_root(tmp_path, settings_factory):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    validator = FileSystemValidator(
        PluginOptions("filesystem", {"path": str(blocker), "preflight": False}),
        support.plugin_context(settings_factory()),
    )
    ctx, challenge = _context("a.example")
    with pytest.raises(ValidationFailure, match="Unable to write"):
        validator.prepare_challenge(ctx, challenge)
