"""
Tarball reference rewriting.

Documents are stored with repository-relative tarball references
(``/<package>/-/<file>``). A rewriter turns those references into something
else when a document crosses a boundary: absolute client URLs on the way out,
relative paths on the way in from an upstream registry.
"""
from __future__ import annotations

import re
from abc import ABC, abstractmethod

from .models import PackageMetadataDocument
from .npm_utils import ASSET_SEPARATOR


class ReferenceRewriter(ABC):
    """
    Transforms a single asset reference. ``rewrite_document`` applies it to the
    ``dist.tarball`` field of every version and returns a new document.
    """

    @abstractmethod
    def rewrite(self, reference: str) -> str:
        pass

    def rewrite_document(self, document: PackageMetadataDocument) -> PackageMetadataDocument:
        versions = {}
        for version, descriptor in document.versions.items():
            dist = descriptor.get("dist")
            if isinstance(dist, dict) and isinstance(dist.get("tarball"), str):
                descriptor = {**descriptor, "dist": {**dist, "tarball": self.rewrite(dist["tarball"])}}
            versions[version] = descriptor
        return document.evolve(versions=versions)


class ClientBaseURLRewriter(ReferenceRewriter):
    """Prefixes the client-facing base URL onto relative references."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    def rewrite(self, reference: str) -> str:
        if "://" in reference:
            return reference
        if not reference.startswith("/"):
            reference = f"/{reference}"
        return f"{self.base_url}{reference}"


class RepositoryPrefixRewriter(ReferenceRewriter):
    """
    Strips whatever precedes ``<package>/-/`` in a reference, e.g. the upstream
    registry URL, leaving ``/<package>/-/<file>``.
    """

    def __init__(self, package_name: str):
        self.package_name = package_name
        self._pattern = re.compile(
            rf"^(.*)/({re.escape(package_name)}{re.escape(ASSET_SEPARATOR)}.+)$"
        )

    def rewrite(self, reference: str) -> str:
        match = self._pattern.match(reference)
        if match is None:
            return reference
        return f"/{match.group(2)}"
