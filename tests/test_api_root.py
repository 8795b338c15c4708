"""Tests for the immutable API root document."""

import dataclasses

import pytest

from api_root import CORE_CONFORMANCE, get_api_root
from ogc_processes.service import CONFORMANCE_CLASSES


def test_assembled_once():
    assert get_api_root() is get_api_root()


def test_cannot_be_modified():
    root = get_api_root()
    with pytest.raises(dataclasses.FrozenInstanceError):
        root.title = "changed"
    assert isinstance(root.conformance_classes, tuple)


def test_conformance_combines_modules_without_duplicates():
    classes = get_api_root().conformance().conformsTo

    assert classes[:len(CORE_CONFORMANCE)] == list(CORE_CONFORMANCE)
    assert set(CONFORMANCE_CLASSES) <= set(classes)
    assert len(classes) == len(set(classes))


def test_landing_page_renders_against_base_url():
    page = get_api_root().landing_page("https://example.org")
    hrefs = {link.rel: link.href for link in page.links}

    assert hrefs["self"] == "https://example.org/api/ogc"
    assert hrefs["conformance"] == "https://example.org/api/ogc/conformance"
    assert "https://example.org/api/processes" in hrefs.values()
