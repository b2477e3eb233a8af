import json
import urllib.parse

import boto3

from imagelog.config import build_settings, load_config
from imagelog.exif import ExifTool
from imagelog.imaging import PillowDeriver
from imagelog.models import Event
from imagelog.processor import ImageProcessor
from imagelog.stores import DynamoRecordStore, S3BlobStore

# Built on first invocation and reused while the worker stays warm
_PROCESSOR = None


def build_processor(settings, session=None):
    session = session or boto3.Session(region_name=settings.get('region'))
    s3 = session.client('s3')
    table = session.resource('dynamodb').Table(settings['dynamo_table'])
    return ImageProcessor(
        settings,
        blobs=S3BlobStore(s3),
        records=DynamoRecordStore(table, conditional_insert=settings['conditional_insert']),
        extractor=ExifTool(settings['exiftool_path'], settings['exiftool_args']),
        deriver=PillowDeriver(),
    )


def get_processor():
    global _PROCESSOR
    if _PROCESSOR is None:
        _PROCESSOR = build_processor(build_settings(load_config()))
    return _PROCESSOR


def parse_events(payload):
    """Yields one Event per object described by the trigger payload."""
    payload = payload or {}

    # S3 notification
    if payload.get('Records'):
        for record in payload['Records']:
            s3 = record.get('s3', {})
            key = s3.get('object', {}).get('key')
            yield Event(
                key=urllib.parse.unquote_plus(key) if key else key,
                bucket=s3.get('bucket', {}).get('name'),
                attributes={'eventName': record.get('eventName')},
            )
        return

    # EventBridge "Object Created"
    detail = payload.get('detail')
    if isinstance(detail, dict) and isinstance(detail.get('object'), dict):
        yield Event(
            key=detail['object'].get('key'),
            bucket=(detail.get('bucket') or {}).get('name'),
            attributes={'detail-type': payload.get('detail-type')},
        )
        return

    # Step Functions style {"bucket": {"name"}, "object": {"key"}}
    if isinstance(payload.get('object'), dict):
        bucket = payload.get('bucket')
        yield Event(
            key=payload['object'].get('key'),
            bucket=bucket.get('name') if isinstance(bucket, dict) else bucket,
        )
        return

    # Object-finalize style {"bucket", "name"} or a bare {"key"}
    key = payload.get('name') or payload.get('key') or ''
    bucket = payload.get('bucket')
    yield Event(
        key=key,
        bucket=bucket if isinstance(bucket, str) else None,
        attributes={k: v for k, v in payload.items() if k not in ('name', 'key', 'bucket')},
    )


def lambda_handler(event, context):
    processor = get_processor()
    if processor.settings.get('debug'):
        print(f"Full Event Payload: {json.dumps(event, default=str)}")

    results = []
    for item in parse_events(event):
        outcome = processor.process(item)
        results.append(outcome.as_dict())
    return {'statusCode': 200, 'results': results}
