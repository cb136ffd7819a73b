import json
import logging
from typing import Dict, Iterable

logger = logging.getLogger(__name__)


class ProductCatalog:
    """Known-good md5 digests of the storefront's product images, keyed by file name."""

    def __init__(self, image_hashes: Dict[str, str]):
        if len(image_hashes) < 1:
            raise ValueError("Product catalog needs at least one image hash")
        self._image_hashes = dict(image_hashes)

    @classmethod
    def from_dicts(cls, rows: Iterable[dict]) -> "ProductCatalog":
        return cls({row['name']: row['hash'].lower() for row in rows})

    @classmethod
    def load(cls, filename: str) -> "ProductCatalog":
        with open(filename, 'r', encoding='utf-8') as f:
            blob = json.load(f)
        catalog = cls.from_dicts(blob.get('image_hashes', []))
        logger.info(f"Loaded {len(catalog)} image hashes from {filename}")
        return catalog

    def __len__(self) -> int:
        return len(self._image_hashes)

    @property
    def num_products(self) -> int:
        return len(self._image_hashes)

    def matches(self, name: str, digest: str) -> bool:
        expected = self._image_hashes.get(name)
        return expected is not None and expected == digest.lower()
