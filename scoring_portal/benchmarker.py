"""
Functional benchmark of a participant's storefront.

A round walks the storefront the way a shopper would (listing, purchase,
item detail, order history) and awards a fixed weight per check. Every page
must reference product images whose md5 matches the known-good catalog.
"""
import hashlib
import logging
import random
import threading
import time
from contextlib import contextmanager
from posixpath import basename
from typing import Optional
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup

from .product_catalog import ProductCatalog

logger = logging.getLogger(__name__)

SCORE_GET_PRODUCTS = 5
SCORE_POST_CHECKOUT = 2
SCORE_GET_PRODUCT = 1
SCORE_GET_CHECKOUTS = 4
SCORE_PER_ROUND = SCORE_GET_PRODUCTS + SCORE_POST_CHECKOUT + SCORE_GET_PRODUCT + SCORE_GET_CHECKOUTS

PATH_PRODUCTS = 'products'
PATH_PRODUCT = 'product/{item_id}'
PATH_CHECKOUT = 'checkout'
PATH_CHECKOUTS = 'checkouts'
PATH_RESET = 'admin/init'

STATUS_OK = 200
STATUS_ACCEPTED = 202


class BenchmarkError(Exception):
    """A benchmark produced no score at all, or the target could not be reset."""

    def __init__(self, message: str, score: int = 0):
        self.score = score
        super().__init__(message)


def _endpoint_url(endpoint: str, path: str) -> str:
    return urljoin(endpoint.rstrip('/') + '/', path)


class Benchmarker:
    """Drives a storefront endpoint and scores its functional behavior."""

    def __init__(
        self,
        catalog: ProductCatalog,
        session: requests.Session = None,
        rng: random.Random = None,
        request_timeout: float = 10,
        max_quantity: int = 10
    ):
        self.catalog = catalog
        self._shared_session = session
        self._local = threading.local()
        self.rng = rng or random.Random()
        self.request_timeout = request_timeout
        self.max_quantity = max(max_quantity, 1)

    # ==================== Sessions ====================

    @property
    def session(self) -> requests.Session:
        """The injected session, or the one owned by the calling thread's run."""
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, 'session', None)
        if session is None:
            session = self._local.session = requests.Session()
        return session

    @contextmanager
    def _session_scope(self):
        """Give the calling thread its own session for the duration of a run."""
        if self._shared_session is not None or getattr(self._local, 'session', None) is not None:
            yield
            return

        self._local.session = requests.Session()
        try:
            yield
        finally:
            self._local.session.close()
            self._local.session = None

    # ==================== Scoring loop ====================

    def run(self, endpoint: str, timeout: float) -> int:
        """
        Run rounds until `timeout` seconds elapse or a round scores zero.

        Returns the accumulated score. Raises BenchmarkError if the endpoint
        never produced a scoring round.
        """
        deadline = time.monotonic() + timeout
        total = 0
        rounds = 0

        with self._session_scope():
            while time.monotonic() < deadline:
                round_score = self.run_round(endpoint)
                rounds += 1
                if round_score == 0:
                    if total == 0:
                        raise BenchmarkError(
                            f"unable to receive expected results from the endpoint ({endpoint})"
                        )
                    logger.warning(f"Benchmark of {endpoint} halted after {rounds} rounds (score {total})")
                    return total
                total += round_score

        logger.info(f"Benchmark of {endpoint} finished: {rounds} rounds, score {total}")
        return total

    def run_round(self, endpoint: str) -> int:
        """
        One pass through the ordered checks; returns the sum of awarded weights.

        A listing that cannot be served ends the round with no score.
        """
        item_id = self.rng.randint(1, self.catalog.num_products)
        quantity = self.rng.randint(1, self.max_quantity)

        listing = self.bench_get_products(endpoint)
        if listing is None:
            return 0

        score = listing
        score += self.bench_post_checkout(endpoint, item_id, quantity)
        score += self.bench_get_product(endpoint, self.rng.randint(1, self.catalog.num_products))
        score += self.bench_get_checkouts(endpoint, item_id, quantity)
        return score

    def reset(self, endpoint: str):
        """Bring the storefront back to its initial data set."""
        url = _endpoint_url(endpoint, PATH_RESET)
        with self._session_scope():
            try:
                resp = self.session.post(url, timeout=self.request_timeout)
            except requests.exceptions.RequestException as e:
                raise BenchmarkError(f"failed to reset {url}: {e}")
        if resp.status_code >= 400:
            raise BenchmarkError(f"failed to reset {url}: HTTP {resp.status_code}")

    # ==================== Checks ====================

    def bench_get_products(self, endpoint: str) -> Optional[int]:
        """
        Listing check. Returns None when the listing is unreachable or not 200,
        0 when its images do not match the catalog.
        """
        try:
            resp = self.session.get(_endpoint_url(endpoint, PATH_PRODUCTS), timeout=self.request_timeout)
        except requests.exceptions.RequestException as e:
            logger.debug(f"GET products failed for {endpoint}: {e}")
            return None
        if resp.status_code != STATUS_OK:
            logger.debug(f"GET products returned {resp.status_code} for {endpoint}")
            return None

        doc = BeautifulSoup(resp.text, 'html.parser')
        images = doc.select('div.content-container img.card-img-top.products-img')
        sources = [img.get('src') for img in images if img.get('src')]
        if not sources:
            return 0

        try:
            if self._image_matches(endpoint, self.rng.choice(sources)):
                return SCORE_GET_PRODUCTS
        except requests.exceptions.RequestException as e:
            logger.debug(f"Listing image fetch failed for {endpoint}: {e}")
        return 0

    def bench_post_checkout(self, endpoint: str, item_id: int, quantity: int) -> int:
        data = {
            'item_id': str(item_id),
            'quantity': str(quantity),
        }
        try:
            resp = self.session.post(
                _endpoint_url(endpoint, PATH_CHECKOUT),
                data=data,
                timeout=self.request_timeout
            )
            doc = BeautifulSoup(resp.text, 'html.parser')
            order_info = ' '.join(p.get_text() for p in doc.select('div.content-container p.card-text'))
            image = doc.select_one('div.content-container img.checkout-img')
            if image is None or not image.get('src'):
                return 0

            if (resp.status_code == STATUS_ACCEPTED
                    and f"{quantity} x" in order_info
                    and self._image_matches(endpoint, image['src'])):
                return SCORE_POST_CHECKOUT
        except requests.exceptions.RequestException as e:
            logger.debug(f"POST checkout failed for {endpoint}: {e}")
        return 0

    def bench_get_product(self, endpoint: str, item_id: int) -> int:
        try:
            resp = self.session.get(
                _endpoint_url(endpoint, PATH_PRODUCT.format(item_id=item_id)),
                timeout=self.request_timeout
            )
            doc = BeautifulSoup(resp.text, 'html.parser')
            image = doc.select_one('div.content-container img.product-img')
            if image is None or not image.get('src'):
                return 0

            if resp.status_code == STATUS_OK and self._image_matches(endpoint, image['src']):
                return SCORE_GET_PRODUCT
        except requests.exceptions.RequestException as e:
            logger.debug(f"GET product {item_id} failed for {endpoint}: {e}")
        return 0

    def bench_get_checkouts(self, endpoint: str, item_id: int, quantity: int) -> int:
        try:
            resp = self.session.get(_endpoint_url(endpoint, PATH_CHECKOUTS), timeout=self.request_timeout)
            if resp.status_code != STATUS_OK:
                return 0

            # The order placed earlier in this round must be listed
            doc = BeautifulSoup(resp.text, 'html.parser')
            order = None
            for row in doc.select('tr'):
                row_id = row.select_one('td.item_id')
                row_quantity = row.select_one('td.quantity')
                if row_id is None or row_quantity is None:
                    continue
                if (row_id.get_text(strip=True) == str(item_id)
                        and row_quantity.get_text(strip=True) == str(quantity)):
                    order = row
                    break

            if order is None:
                return 0

            image = order.select_one('td.item_image img')
            if image is None or not image.get('src'):
                return 0

            if self._image_matches(endpoint, image['src']):
                return SCORE_GET_CHECKOUTS
        except requests.exceptions.RequestException as e:
            logger.debug(f"GET checkouts failed for {endpoint}: {e}")
        return 0

    # ==================== Media ====================

    def _image_matches(self, endpoint: str, src: str) -> bool:
        image_url = urljoin(endpoint, src)
        digest = self._fetch_digest(image_url)
        if digest is None:
            return False
        return self.catalog.matches(basename(urlparse(image_url).path), digest)

    def _fetch_digest(self, image_url: str) -> Optional[str]:
        resp = self.session.get(image_url, timeout=self.request_timeout)
        if resp.status_code != STATUS_OK:
            return None
        return hashlib.md5(resp.content).hexdigest()
