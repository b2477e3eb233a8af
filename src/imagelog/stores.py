import math
import mimetypes
import uuid
from decimal import Decimal

from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError

from imagelog.errors import AccessDenied, NotFound, RecordExists, RecordStoreError, TransportError
from imagelog.models import ProcessingRecord

NOT_FOUND_CODES = ('404', 'NoSuchKey', 'NotFound', 'NoSuchBucket')
ACCESS_DENIED_CODES = ('403', 'AccessDenied', 'Forbidden', 'AllAccessDisabled')


def s3_uri(bucket, key):
    return f"s3://{bucket}/{key}"


# --- DECIMAL HANDLING (DynamoDB rejects Python floats) ---
def wrap_decimal(obj):
    if isinstance(obj, list): return [wrap_decimal(i) for i in obj]
    if isinstance(obj, dict): return {k: wrap_decimal(v) for k, v in obj.items()}
    if isinstance(obj, bool): return obj
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj): return str(obj)
        return Decimal(str(obj))
    if isinstance(obj, Decimal) and not obj.is_finite(): return str(obj)
    return obj


def unwrap_decimal(obj):
    if isinstance(obj, list): return [unwrap_decimal(i) for i in obj]
    if isinstance(obj, dict): return {k: unwrap_decimal(v) for k, v in obj.items()}
    if isinstance(obj, Decimal): return int(obj) if obj % 1 == 0 else float(obj)
    return obj


class S3BlobStore:
    def __init__(self, client):
        self.client = client

    def download(self, bucket, key, local_path):
        try:
            self.client.download_file(bucket, key, local_path)
        except (ClientError, BotoCoreError) as e:
            raise _classify(e, f"s3://{bucket}/{key}") from e
        return local_path

    def upload(self, bucket, local_path, dest_key, content_type=None):
        content_type = content_type or mimetypes.guess_type(dest_key)[0] or 'application/octet-stream'
        try:
            self.client.upload_file(
                local_path, bucket, dest_key,
                ExtraArgs={'ContentType': content_type}
            )
        except (ClientError, BotoCoreError) as e:
            raise _classify(e, f"s3://{bucket}/{dest_key}") from e
        return s3_uri(bucket, dest_key)


def _classify(error, location):
    if isinstance(error, ClientError):
        code = str(error.response.get('Error', {}).get('Code', ''))
        if code in NOT_FOUND_CODES:
            return NotFound(f"{location} not found")
        if code in ACCESS_DENIED_CODES:
            return AccessDenied(f"Access denied to {location}")
    return TransportError(f"{location}: {error}")


class DynamoRecordStore:
    """
    Processing log in a single DynamoDB table.

    PK is IMAGE#<key>; every processing run adds one LOG#<id> item under it,
    so "already processed" is just "does the partition have an item".
    """

    def __init__(self, table, conditional_insert=False):
        self.table = table
        self.conditional_insert = conditional_insert

    @staticmethod
    def partition_key(key):
        return f"IMAGE#{key}"

    def find_by_key(self, key):
        try:
            response = self.table.query(
                KeyConditionExpression=Key('PK').eq(self.partition_key(key)),
                Limit=1
            )
        except (ClientError, BotoCoreError) as e:
            raise RecordStoreError(f"Lookup failed for {key}: {e}") from e
        items = response.get('Items', [])
        return from_item(items[0]) if items else None

    def insert(self, record):
        if self.conditional_insert:
            record_id = 'LOG'
            sort_key = 'LOG'
        else:
            record_id = record.record_id or uuid.uuid4().hex
            sort_key = f"LOG#{record_id}"

        item = to_item(record)
        item['SK'] = sort_key
        item['RecordId'] = record_id

        put_args = {'Item': wrap_decimal(item)}
        if self.conditional_insert:
            put_args['ConditionExpression'] = 'attribute_not_exists(PK)'

        try:
            self.table.put_item(**put_args)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException':
                raise RecordExists(f"Record already exists for {record.key}") from e
            raise RecordStoreError(f"Insert failed for {record.key}: {e}") from e
        except BotoCoreError as e:
            raise RecordStoreError(f"Insert failed for {record.key}: {e}") from e

        record.record_id = record_id
        return record_id


def to_item(record):
    derived = {entry['purpose']: entry['location'] for entry in record.derived_locations}
    return {
        'PK': DynamoRecordStore.partition_key(record.key),
        'FileName': record.key,
        'SourceLocation': record.source_location,
        'SourceBucket': _bucket_of(record.source_location),
        'ThumbnailBucket': _bucket_of(derived.get('thumbnail')),
        'ProcessedBucket': _bucket_of(derived.get('processed')),
        'DerivedLocations': record.derived_locations,
        'BasicMetadata': record.basic_attributes,
        'FullMetadata': record.extended_attributes,
        'Geohash': record.geohash,
        'ProcessedAt': record.processed_at,
    }


def from_item(item):
    item = unwrap_decimal(item)
    return ProcessingRecord(
        key=item.get('FileName', item['PK'].replace('IMAGE#', '', 1)),
        source_location=item.get('SourceLocation'),
        derived_locations=item.get('DerivedLocations', []),
        basic_attributes=item.get('BasicMetadata', {}),
        extended_attributes=item.get('FullMetadata', {}),
        processed_at=item.get('ProcessedAt'),
        geohash=item.get('Geohash'),
        record_id=item.get('RecordId'),
    )


def _bucket_of(location):
    if not location or not location.startswith('s3://'):
        return None
    return location[len('s3://'):].split('/', 1)[0]
