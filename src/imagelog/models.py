from dataclasses import dataclass, field

PROCESSED = 'PROCESSED'
SKIPPED = 'SKIPPED'
REJECTED = 'REJECTED'


@dataclass
class Event:
    """One uploaded object. Only `key` matters to the processor."""
    key: str
    bucket: str = None
    attributes: dict = field(default_factory=dict)


@dataclass
class ProcessingRecord:
    key: str
    source_location: str
    derived_locations: list
    basic_attributes: dict
    extended_attributes: dict
    processed_at: str
    geohash: str = None
    record_id: str = None

    def location_for(self, purpose):
        for entry in self.derived_locations:
            if entry['purpose'] == purpose:
                return entry['location']
        return None


@dataclass
class ProcessingOutcome:
    status: str
    key: str
    record: ProcessingRecord = None
    reason: str = None

    @classmethod
    def processed(cls, record):
        return cls(PROCESSED, record.key, record=record)

    @classmethod
    def skipped(cls, key, reason='already processed'):
        return cls(SKIPPED, key, reason=reason)

    @classmethod
    def rejected(cls, key, reason):
        return cls(REJECTED, key, reason=reason)

    def as_dict(self):
        result = {'key': self.key, 'status': self.status}
        if self.reason:
            result['reason'] = self.reason
        if self.record is not None:
            result['recordId'] = self.record.record_id
        return result
