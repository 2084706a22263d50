"""Tests for tarball reference rewriting."""

from npm_adapter.domain.models import PackageMetadataDocument
from npm_adapter.domain.npm_utils import relative_tarball
from npm_adapter.domain.rewriting import ClientBaseURLRewriter, RepositoryPrefixRewriter


def _document(tarball: str) -> PackageMetadataDocument:
    return PackageMetadataDocument(
        name="@hello/simple",
        versions={
            "1.0.1": {"version": "1.0.1", "dist": {"tarball": tarball, "shasum": "abc"}},
            "1.0.2": {"version": "1.0.2"},
        },
    )


def test_client_base_url_prefixes_relative_reference():
    rewriter = ClientBaseURLRewriter("http://registry.example:8080/npm/")

    assert (
        rewriter.rewrite("/@hello/simple/-/simple-1.0.1.tgz")
        == "http://registry.example:8080/npm/@hello/simple/-/simple-1.0.1.tgz"
    )
    assert rewriter.rewrite("asdas/-/asdas-1.0.0.tgz") == "http://registry.example:8080/npm/asdas/-/asdas-1.0.0.tgz"


def test_client_base_url_leaves_absolute_reference():
    rewriter = ClientBaseURLRewriter("http://registry.example")

    assert rewriter.rewrite("https://cdn.example/a.tgz") == "https://cdn.example/a.tgz"


def test_repository_prefix_strips_upstream_url():
    assert (
        RepositoryPrefixRewriter("@hello/simple").rewrite(
            "https://registry.npmjs.org/@hello/simple/-/simple-1.0.1.tgz"
        )
        == "/@hello/simple/-/simple-1.0.1.tgz"
    )
    assert (
        RepositoryPrefixRewriter("asdas").rewrite("http://mirror/npm/asdas/-/asdas-1.0.0.tgz")
        == "/asdas/-/asdas-1.0.0.tgz"
    )


def test_repository_prefix_ignores_other_packages():
    rewriter = RepositoryPrefixRewriter("asdas")

    assert rewriter.rewrite("https://registry.npmjs.org/other/-/other-1.0.0.tgz") == (
        "https://registry.npmjs.org/other/-/other-1.0.0.tgz"
    )


def test_rewrite_document_returns_new_value():
    original = _document("/@hello/simple/-/simple-1.0.1.tgz")

    served = ClientBaseURLRewriter("http://registry.example").rewrite_document(original)

    assert served.versions["1.0.1"]["dist"] == {
        "tarball": "http://registry.example/@hello/simple/-/simple-1.0.1.tgz",
        "shasum": "abc",
    }
    assert served.versions["1.0.2"] == {"version": "1.0.2"}
    assert original.versions["1.0.1"]["dist"]["tarball"] == "/@hello/simple/-/simple-1.0.1.tgz"


def test_relative_tarball():
    assert (
        relative_tarball("@hello/simple", "http://localhost:4873/@hello/simple/-/simple-1.0.1.tgz")
        == "/@hello/simple/-/simple-1.0.1.tgz"
    )
    assert (
        relative_tarball("@hello/simple", "http://localhost/@hello/simple/-/@hello/simple-1.0.1.tgz")
        == "/@hello/simple/-/@hello/simple-1.0.1.tgz"
    )
    assert relative_tarball("pkg", "pkg-1.0.0.tgz") == "/pkg/-/pkg-1.0.0.tgz"
