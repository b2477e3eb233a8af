import os
import re
import json
import time
import mimetypes
import tempfile
import traceback
from contextlib import ExitStack, contextmanager
from datetime import datetime, timezone

import pygeohash as pgh

from imagelog.errors import (
    DerivationFailed, DownloadFailed, ExtractionFailed, InvalidEvent,
    PersistFailed, ProcessingFailed, RecordExists, RecordStoreError, UploadFailed,
)
from imagelog.models import ProcessingOutcome, ProcessingRecord
from imagelog.normalize import normalize
from imagelog.stores import s3_uri


# --- UTILITIES ---
def get_fuzzy_tag(data, pattern):
    matches = [
        str(v).strip() for k, v in data.items()
        if re.search(pattern, k, re.I) and v is not None and str(v).strip() != ""
    ]
    if not matches: return None
    return sorted(matches, key=len, reverse=True)[0]


def compute_geohash(metadata, precision=9):
    lat = get_fuzzy_tag(metadata, r'(^|:)GPSLatitude$')
    lon = get_fuzzy_tag(metadata, r'(^|:)GPSLongitude$')
    if lat is None or lon is None:
        return None
    try:
        return pgh.encode(float(lat), float(lon), precision=precision)
    except (ValueError, TypeError):
        return None


def content_type_for(fmt):
    return mimetypes.guess_type(f"file.{fmt.lower()}")[0]


@contextmanager
def _stage(error_cls, key):
    """Re-raises any collaborator failure as the stage's tagged error."""
    try:
        yield
    except ProcessingFailed:
        raise
    except Exception as e:
        raise error_cls(key, e) from e


# --- MAIN PROCESSOR ---
class ImageProcessor:
    """
    Turns one upload event into a thumbnail, a reformatted copy and a log record.

    The extractor is owned by the processor: it is shut down at the end of
    every invocation that gets past the skip check, on success or failure.
    """

    def __init__(self, settings, blobs, records, extractor, deriver):
        self.settings = settings
        self.blobs = blobs
        self.records = records
        self.extractor = extractor
        self.deriver = deriver

    def process(self, event):
        key = getattr(event, 'key', None)
        if not isinstance(key, str) or not key.strip():
            raise InvalidEvent("File name is missing from the event payload")

        start_time = time.time()
        debug = self.settings.get('debug')

        # 1. SKIP LOGIC
        try:
            if self.records.find_by_key(key) is not None:
                print(f"⏭️  Skipping {key}: already processed")
                return ProcessingOutcome.skipped(key)
        except RecordStoreError as e:
            print(f"⚠️  DB Check Failed: {e}")

        with ExitStack() as scope:
            scope.callback(self.extractor.shutdown)
            try:
                outcome = self._transform(key, scope)
            except Exception as e:
                self._report_failure(key, e)
                raise

        if debug:
            print(f"✅ {key} {outcome.status} ({(time.time()-start_time)*1000:.0f}ms)")
        return outcome

    handle = process

    def _transform(self, key, scope):
        settings = self.settings
        filename = os.path.basename(key)

        # 2. TYPE GATE
        extension = next((ext for ext in settings['extensions'] if filename.lower().endswith(ext)), None)
        if extension is None:
            print(f"🚫 Unsupported file type: {key!r}")
            return ProcessingOutcome.rejected(
                key, f"unsupported file type '{os.path.splitext(filename)[1].lower()}'"
            )

        # 3. ACQUIRE (the temp dir and everything in it goes away with the scope;
        # local names never come from the key)
        tmp_dir = scope.enter_context(
            tempfile.TemporaryDirectory(prefix='imagelog-', dir=settings.get('tmp_dir'))
        )
        local_path = os.path.join(tmp_dir, f"source{extension}")
        thumbnail_path = os.path.join(tmp_dir, f"thumbnail{extension}")
        processed_path = os.path.join(tmp_dir, f"processed{extension}")

        source_key = key.lstrip('/')
        source_bucket = settings['source_bucket']
        if settings.get('debug'):
            print(f"📥 Downloading s3://{source_bucket}/{source_key}")
        with _stage(DownloadFailed, key):
            self.blobs.download(source_bucket, source_key, local_path)

        # 4. DERIVE
        max_width, max_height = settings['thumbnail_size']
        processed_format = settings['processed_format']
        with _stage(DerivationFailed, key):
            basic_attributes = self.deriver.probe(local_path)
            self.deriver.resize_bounded(local_path, max_width, max_height, thumbnail_path)
            self.deriver.reformat(local_path, processed_format, processed_path)

        # 5. EXTRACT + 6. NORMALIZE
        with _stage(ExtractionFailed, key):
            raw_metadata = self.extractor.read(local_path)
            extended_attributes = normalize(raw_metadata, max_depth=settings.get('max_depth', 32))

        # 7. PUBLISH
        thumbnail_key = f"thumbnail-{filename}"
        processed_key = f"processed-{filename}"
        with _stage(UploadFailed, key):
            thumbnail_location = self.blobs.upload(
                settings['thumbnail_bucket'], thumbnail_path, thumbnail_key
            ) or s3_uri(settings['thumbnail_bucket'], thumbnail_key)
            processed_location = self.blobs.upload(
                settings['processed_bucket'], processed_path, processed_key,
                content_type=content_type_for(processed_format)
            ) or s3_uri(settings['processed_bucket'], processed_key)

        # 8. PERSIST (last, so a record never points at a missing upload)
        record = ProcessingRecord(
            key=key,
            source_location=s3_uri(source_bucket, source_key),
            derived_locations=[
                {'purpose': 'thumbnail', 'location': thumbnail_location},
                {'purpose': 'processed', 'location': processed_location},
            ],
            basic_attributes=basic_attributes,
            extended_attributes=extended_attributes,
            processed_at=datetime.now(timezone.utc).isoformat(),
            geohash=compute_geohash(extended_attributes, settings.get('geohash_precision', 9)),
        )
        with _stage(PersistFailed, key):
            try:
                self.records.insert(record)
            except RecordExists:
                print(f"⏭️  Skipping {key}: record written by a concurrent invocation")
                return ProcessingOutcome.skipped(key, 'record already exists')

        print(f"💾 Logged {key} -> {thumbnail_location}, {processed_location}")
        return ProcessingOutcome.processed(record)

    def _report_failure(self, key, error):
        print(json.dumps({
            'severity': 'ERROR',
            'message': 'Error processing file',
            'key': key,
            'stage': type(error).__name__,
            'error': str(getattr(error, 'cause', error)),
            'stack': traceback.format_exc(),
        }))
