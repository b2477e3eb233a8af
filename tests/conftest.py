"""
Pytest configuration and shared fakes for imagelog tests.

The fakes stand in for S3, DynamoDB, exiftool and Pillow and record every
call so tests can assert on side effects.
"""
import io
import os

import pytest
from PIL import Image

from imagelog.errors import NotFound
from imagelog.models import ProcessingRecord
from imagelog.processor import ImageProcessor


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: Unit tests that don't require external services")
    config.addinivalue_line("markers", "exiftool: Tests that need a real exiftool binary")


def make_image_bytes(size=(800, 600), fmt='JPEG', mode='RGB', color=(200, 30, 30)):
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


class FakeBlobStore:
    def __init__(self, objects=None):
        self.objects = dict(objects or {})
        self.uploads = {}
        self.calls = []
        self.fail_upload = None
        self.fail_download = None

    def download(self, bucket, key, local_path):
        self.calls.append(('download', bucket, key))
        if self.fail_download:
            raise self.fail_download
        if (bucket, key) not in self.objects:
            raise NotFound(f"s3://{bucket}/{key} not found")
        with open(local_path, 'wb') as f:
            f.write(self.objects[(bucket, key)])
        return local_path

    def upload(self, bucket, local_path, dest_key, content_type=None):
        self.calls.append(('upload', bucket, dest_key))
        if self.fail_upload:
            raise self.fail_upload
        with open(local_path, 'rb') as f:
            self.uploads[(bucket, dest_key)] = f.read()
        return f"s3://{bucket}/{dest_key}"


class FakeRecordStore:
    def __init__(self):
        self.records = []
        self.calls = []
        self.fail_insert = None

    def find_by_key(self, key):
        self.calls.append(('find_by_key', key))
        for record in self.records:
            if record.key == key:
                return record
        return None

    def insert(self, record):
        self.calls.append(('insert', record.key))
        if self.fail_insert:
            raise self.fail_insert
        record.record_id = f"rec-{len(self.records) + 1}"
        self.records.append(record)
        return record.record_id

    def add_existing(self, key):
        self.records.append(ProcessingRecord(
            key=key, source_location=f"s3://src/{key}", derived_locations=[],
            basic_attributes={}, extended_attributes={},
            processed_at='2024-01-01T00:00:00+00:00', record_id='existing',
        ))


class FakeExtractor:
    def __init__(self, metadata=None):
        self.metadata = metadata if metadata is not None else {
            'Make': 'Canon',
            'Model': 'EOS 5D',
            'DateTimeOriginal': '2024:05:01 10:14:29',
            'GPSLatitude': 37.7749,
            'GPSLongitude': -122.4194,
            'ThumbnailImage': b'\xff\xd8\xff\xe0',
        }
        self.read_calls = []
        self.shutdown_calls = 0
        self.fail = None

    def read(self, file_path):
        self.read_calls.append(file_path)
        if self.fail:
            raise self.fail
        return self.metadata

    def shutdown(self):
        self.shutdown_calls += 1


class FakeDeriver:
    def __init__(self, width=800, height=600):
        self.width = width
        self.height = height
        self.calls = []
        self.fail = None

    def probe(self, file_path):
        self.calls.append(('probe', file_path))
        if self.fail:
            raise self.fail
        return {'format': 'jpeg', 'width': self.width, 'height': self.height,
                'color_space': 'srgb', 'channels': 3, 'has_alpha': False}

    def resize_bounded(self, file_path, max_width, max_height, dest_path):
        self.calls.append(('resize_bounded', max_width, max_height))
        with open(dest_path, 'wb') as f:
            f.write(b'thumb')
        return dest_path

    def reformat(self, file_path, target_format, dest_path):
        self.calls.append(('reformat', target_format))
        with open(dest_path, 'wb') as f:
            f.write(b'processed')
        return dest_path


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / 'work'
    path.mkdir()
    return path


@pytest.fixture
def settings(work_dir):
    return {
        'region': 'us-east-1',
        'source_bucket': 'image-upload-bucket',
        'thumbnail_bucket': 'thumbnail-bucket',
        'processed_bucket': 'processed-images-bucket',
        'dynamo_table': 'image_logs',
        'exiftool_path': 'exiftool',
        'exiftool_args': ['-json', '-n'],
        'thumbnail_size': (200, 200),
        'processed_format': 'JPEG',
        'extensions': ('.jpg', '.jpeg', '.png', '.gif'),
        'max_depth': 32,
        'tmp_dir': str(work_dir),
        'conditional_insert': False,
        'geohash_precision': 9,
        'debug': True,
    }


@pytest.fixture
def blobs():
    return FakeBlobStore({
        ('image-upload-bucket', 'photos/sample.jpg'): make_image_bytes(),
    })


@pytest.fixture
def records():
    return FakeRecordStore()


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def deriver():
    return FakeDeriver()


@pytest.fixture
def processor(settings, blobs, records, extractor, deriver):
    return ImageProcessor(settings, blobs, records, extractor, deriver)


@pytest.fixture
def leftover_files(work_dir):
    """Returns a callable listing anything still under the processor's temp dir."""
    def _list():
        return [os.path.join(root, f) for root, dirs, files in os.walk(work_dir) for f in files + dirs]
    return _list
