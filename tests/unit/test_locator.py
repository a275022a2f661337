"""Unit tests for pagecache.locator."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from pagecache.config import FetcherSettings, SiteSettings
from pagecache.locator import AssetLocator
from pagecache.models.assets import LocalAsset, RemoteAsset, Unresolvable

PAGE = "http://example.com/blog/post-1"


@pytest.fixture()
def locator(docroot: Path) -> AssetLocator:
    return AssetLocator(SiteSettings(home_url="http://example.com", document_root=str(docroot)), FetcherSettings())


class TestAbsoluteUrl:
    def test_protocol_relative_uses_request_scheme(self, docroot: Path) -> None:
        locator = AssetLocator(
            SiteSettings(home_url="http://example.com", document_root=str(docroot)),
            FetcherSettings(),
            scheme="https",
        )
        assert locator.absolute_url("//cdn.example.net/a.css") == "https://cdn.example.net/a.css"

    def test_root_relative(self, locator: AssetLocator) -> None:
        assert locator.absolute_url("/assets/a.css", PAGE) == "http://example.com/assets/a.css"

    def test_document_relative(self, locator: AssetLocator) -> None:
        assert locator.absolute_url("img/x.png", "http://example.com/assets/css/a.css") == (
            "http://example.com/assets/css/img/x.png"
        )

    def test_absolute_unchanged(self, locator: AssetLocator) -> None:
        assert locator.absolute_url("https://other.org/x.js") == "https://other.org/x.js"


class TestSameOrigin:
    def test_relative_is_same_origin(self, locator: AssetLocator) -> None:
        assert locator.is_same_origin("assets/a.css")

    def test_host_comparison_ignores_case(self, locator: AssetLocator) -> None:
        assert locator.is_same_origin("http://EXAMPLE.com/a.css")

    def test_other_host(self, locator: AssetLocator) -> None:
        assert not locator.is_same_origin("//cdn.example.net/a.css")


class TestResolve:
    def test_local_file(self, locator: AssetLocator, docroot: Path) -> None:
        result = locator.resolve("/assets/css/a.css", PAGE)
        assert isinstance(result, LocalAsset)
        assert result.path == Path(os.path.realpath(docroot)) / "assets" / "css" / "a.css"
        assert result.url == "http://example.com/assets/css/a.css"

    def test_query_string_ignored_for_path(self, locator: AssetLocator) -> None:
        assert isinstance(locator.resolve("/assets/css/a.css?ver=6.4", PAGE), LocalAsset)

    def test_relative_to_page(self, locator: AssetLocator) -> None:
        assert isinstance(locator.resolve("../assets/css/a.css", PAGE), LocalAsset)

    def test_missing_file(self, locator: AssetLocator) -> None:
        result = locator.resolve("/assets/css/nope.css", PAGE)
        assert isinstance(result, Unresolvable)
        assert result.reason == "missing"

    def test_cross_origin(self, locator: AssetLocator) -> None:
        result = locator.resolve("https://cdn.other.org/a.css", PAGE)
        assert isinstance(result, Unresolvable)
        assert result.reason == "cross_origin"

    def test_allow_listed_remote_host(self, locator: AssetLocator) -> None:
        result = locator.resolve("https://fonts.googleapis.com/css?family=Roboto", PAGE)
        assert result == RemoteAsset(url="https://fonts.googleapis.com/css?family=Roboto")

    @pytest.mark.parametrize("url", ["", "data:text/css,a{}", "javascript:void(0)", "blob:xyz"])
    def test_inert_references(self, locator: AssetLocator, url: str) -> None:
        assert isinstance(locator.resolve(url, PAGE), Unresolvable)

    def test_extension_guard(self, locator: AssetLocator) -> None:
        result = locator.resolve("/assets/js/one.js", PAGE, extensions=(".css",))
        assert isinstance(result, Unresolvable)
        assert result.reason == "unexpected_extension"

    def test_base_path_is_stripped(self, docroot: Path) -> None:
        locator = AssetLocator(
            SiteSettings(home_url="http://example.com/site", document_root=str(docroot), base_path="/site"),
            FetcherSettings(),
        )
        assert isinstance(locator.resolve("/site/assets/css/a.css"), LocalAsset)


class TestContainment:
    @pytest.mark.parametrize(
        "url",
        [
            "/../../etc/passwd",
            "/assets/../../secret.txt",
            "/%2e%2e/%2e%2e/etc/passwd",
            "/assets/%2e%2e%2f%2e%2e%2fsecret.txt",
            "/assets/css/a.css%00.png",
        ],
    )
    def test_traversal_never_escapes_root(self, locator: AssetLocator, docroot: Path, url: str) -> None:
        (docroot.parent / "secret.txt").write_text("secret")
        result = locator.resolve(url, PAGE)
        if isinstance(result, LocalAsset):
            assert os.path.commonpath([os.path.realpath(docroot), str(result.path)]) == os.path.realpath(docroot)
        else:
            assert isinstance(result, Unresolvable)

    def test_double_encoding_is_decoded_once(self, locator: AssetLocator) -> None:
        # %252e decodes to the literal "%2e", which is not a parent reference
        path = locator.local_path("/%252e%252e/etc/passwd")
        assert path is not None
        assert "%2e%2e" in path

    def test_escaping_path_maps_to_none(self, locator: AssetLocator) -> None:
        assert locator.local_path("/%2e%2e/%2e%2e/etc/passwd") is None

    def test_symlink_out_of_root_rejected(self, locator: AssetLocator, docroot: Path) -> None:
        outside = docroot.parent / "outside.css"
        outside.write_text("body{}")
        (docroot / "assets" / "css" / "linked.css").symlink_to(outside)

        result = locator.resolve("/assets/css/linked.css", PAGE, extensions=(".css",))
        assert isinstance(result, Unresolvable)
        assert result.reason == "outside_document_root"
