"""
Pytest configuration and fixtures for scoring portal tests.
"""
import hashlib
import json
import os
import re
import sys
from posixpath import basename
from urllib.parse import urlparse

import pytest
import requests

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'
os.environ['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'

from scoring_portal.app import create_app
from scoring_portal.models import db
from scoring_portal.availability_rater import ResourceRecord
from scoring_portal.product_catalog import ProductCatalog
from scoring_portal.user_directory import UserDirectory


IMAGES = {
    'item-1.jpg': b'\xff\xd8\xff\xe0 hunters-race product image',
    'item-2.jpg': b'\xff\xd8\xff\xe0 annie-spratt product image',
}

PARTICIPANTS = [
    {'key': 'key-alice', 'display_name': 'alice', 'team': 'red', 'region': 'emea'},
    {'key': 'key-bob', 'display_name': 'bob', 'team': 'blue', 'region': 'amer'},
    {'key': 'key-carol', 'display_name': 'carol', 'team': 'red', 'region': 'apac'},
    {'key': 'key-dave', 'display_name': 'dave', 'team': 'blue', 'region': 'amer'},
    {'key': 'key-erin', 'display_name': 'erin', 'team': 'green', 'region': 'emea'},
]

ENDPOINT = 'https://shop.example.com'

WEBAPP = 'service_role_webapp'
DB = 'service_role_db'
REQUIRED_LABELS = {WEBAPP: 'true', DB: 'true'}


def md5_hex(content: bytes) -> str:
    return hashlib.md5(content).hexdigest()


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = '', content: bytes = None):
        self.status_code = status_code
        self.text = text
        self.content = content if content is not None else text.encode('utf-8')


class FakeStorefront:
    """
    In-process storefront used in place of a requests session.

    Pages listed in `corrupt_views` ('listing', 'checkout', 'detail',
    'history') reference an image whose bytes differ from the catalog.
    """

    def __init__(self, images: dict = None):
        self.images = dict(images or IMAGES)
        self.orders = []
        self.requests = []
        self.corrupt_views = set()
        self.down = False
        self.listing_status = 200
        self.checkout_status = 202
        self.reset_status = 202

    # ----- page rendering -----

    def _image_src(self, item_id: int, view: str) -> str:
        prefix = '/corrupt' if view in self.corrupt_views else '/assets'
        return f"{prefix}/item-{item_id}.jpg"

    def _item_ids(self):
        return range(1, len(self.images) + 1)

    def _listing_html(self) -> str:
        cards = ''.join(
            f'<div class="card"><img class="card-img-top products-img" src="{self._image_src(i, "listing")}"></div>'
            for i in self._item_ids()
        )
        return f'<html><body><div class="content-container">{cards}</div></body></html>'

    def _detail_html(self, item_id: int) -> str:
        return (
            '<html><body><div class="content-container">'
            f'<img class="product-img" src="{self._image_src(item_id, "detail")}">'
            '</div></body></html>'
        )

    def _checkout_html(self, item_id: int, quantity: int) -> str:
        return (
            '<html><body><div class="content-container">'
            f'<p class="card-text">{quantity} x item-{item_id}</p>'
            f'<img class="checkout-img" src="{self._image_src(item_id, "checkout")}">'
            '</div></body></html>'
        )

    def _history_html(self) -> str:
        rows = ''.join(
            '<tr>'
            f'<td class="item_id">{item_id}</td>'
            f'<td class="quantity">{quantity}</td>'
            f'<td class="item_image"><img src="{self._image_src(item_id, "history")}"></td>'
            '</tr>'
            for item_id, quantity in self.orders
        )
        return f'<html><body><table>{rows}</table></body></html>'

    # ----- requests.Session interface -----

    def get(self, url, timeout=None, **kwargs):
        self.requests.append(('GET', url))
        if self.down:
            raise requests.exceptions.ConnectionError('connection refused')

        path = urlparse(url).path
        if path == '/products':
            return FakeResponse(self.listing_status, self._listing_html())
        if path == '/checkouts':
            return FakeResponse(200, self._history_html())

        match = re.match(r'^/product/(\d+)$', path)
        if match:
            item_id = int(match.group(1))
            if item_id not in self._item_ids():
                return FakeResponse(404, 'not found')
            return FakeResponse(200, self._detail_html(item_id))

        if path.startswith('/assets/') and basename(path) in self.images:
            return FakeResponse(200, content=self.images[basename(path)])
        if path.startswith('/corrupt/'):
            return FakeResponse(200, content=b'tampered image bytes')

        return FakeResponse(404, 'not found')

    def post(self, url, data=None, timeout=None, **kwargs):
        self.requests.append(('POST', url))
        if self.down:
            raise requests.exceptions.ConnectionError('connection refused')

        path = urlparse(url).path
        if path == '/admin/init':
            self.orders.clear()
            return FakeResponse(self.reset_status, 'Initialized data.')

        if path == '/checkout':
            item_id = int(data['item_id'])
            quantity = int(data['quantity'])
            if item_id not in self._item_ids() or quantity < 1:
                return FakeResponse(400, 'bad request')
            self.orders.append((item_id, quantity))
            return FakeResponse(self.checkout_status, self._checkout_html(item_id, quantity))

        return FakeResponse(404, 'not found')

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, u in self.requests if m == method and urlparse(u).path == path)


class FakeInventory:
    """Resource inventory returning a fixed record list."""

    def __init__(self, records=None, error: Exception = None):
        self.records = list(records or [])
        self.error = error
        self.calls = []

    def list_resources(self, project_id, asset_kinds):
        self.calls.append((project_id, list(asset_kinds)))
        if self.error is not None:
            raise self.error
        return list(self.records)


def compute(label: str, location: str, status: str = 'RUNNING', value: str = 'true') -> ResourceRecord:
    return ResourceRecord(
        asset_kind='compute.googleapis.com/Instance',
        location=location,
        labels={label: value},
        status=status,
    )


@pytest.fixture(scope='session')
def data_files(tmp_path_factory):
    """Participant directory and image hash files."""
    data_dir = tmp_path_factory.mktemp('data')

    users_file = data_dir / 'users.json'
    users_file.write_text(json.dumps({'users': PARTICIPANTS}))

    hashes_file = data_dir / 'image_hashes.json'
    hashes_file.write_text(json.dumps({
        'image_hashes': [{'name': name, 'hash': md5_hex(content)} for name, content in IMAGES.items()]
    }))

    return str(users_file), str(hashes_file)


@pytest.fixture
def directory():
    return UserDirectory.from_dicts(PARTICIPANTS)


@pytest.fixture
def catalog():
    return ProductCatalog({name: md5_hex(content) for name, content in IMAGES.items()})


@pytest.fixture
def storefront():
    return FakeStorefront()


@pytest.fixture
def healthy_records():
    """Frontend in two zones of one region, database in one zone."""
    return [
        compute(WEBAPP, 'us-central1-a'),
        compute(WEBAPP, 'us-central1-b'),
        compute(DB, 'us-central1-c'),
    ]


@pytest.fixture
def inventory(healthy_records):
    return FakeInventory(healthy_records)


@pytest.fixture
def app(data_files, storefront, inventory):
    """Create application for testing."""
    users_file, hashes_file = data_files
    app = create_app(
        'testing',
        inventory=inventory,
        http_session=storefront,
        USERS_DATA_FILENAME=users_file,
        IMAGE_HASHES_DATA_FILENAME=hashes_file,
        BENCHMARK_TIMEOUT_SECOND=0.2,
    )

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def db_session(app):
    """Database session with empty tables."""
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()
