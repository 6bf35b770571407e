from __future__ import annotations

from typing import Mapping, Protocol, Sequence


class ImageSource(Protocol):
    def list_page_images(self, document_ref: str) -> list[str]: ...


class StaticImageSource:
    """Serves page URLs that were already listed, keyed by document ref."""

    def __init__(self, pages: Mapping[str, Sequence[str]]) -> None:
        self._pages = {ref: list(urls) for ref, urls in pages.items()}

    def list_page_images(self, document_ref: str) -> list[str]:
        return list(self._pages.get(document_ref, []))
