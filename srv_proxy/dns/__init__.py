from .errors import (
    ResolutionError,
    TransportError,
    ValidationError,
    RecordNotFoundError,
)
from .models import DNSQuestion, DNSAnswer, DNSJSON, SRVRecord, RecordType
from .doh_client import lookup_record, DOH_ENDPOINT
from .srv_resolver import SRVLookup, lookup_srv, resolve_srv, parse_srv_data

__all__ = [
    "ResolutionError",
    "TransportError",
    "ValidationError",
    "RecordNotFoundError",
    "DNSQuestion",
    "DNSAnswer",
    "DNSJSON",
    "SRVRecord",
    "RecordType",
    "lookup_record",
    "DOH_ENDPOINT",
    "SRVLookup",
    "lookup_srv",
    "resolve_srv",
    "parse_srv_data",
]
