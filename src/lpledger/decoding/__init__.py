"""NFPM event decoding.

This package provides:
- Event specification system (EventSpec, TopicFieldSpec, DataFieldSpec)
- Signature-driven registry builder and the NFPM registry
- Decoder from RPC logs to RawPositionEvent
"""

from lpledger.decoding.decoder import DecodedEvent, decode_log, to_raw_position_event
from lpledger.decoding.registry import event_spec_from_signature, make_nfpm_registry, make_registry
from lpledger.decoding.specs import DataFieldSpec, EventRegistry, EventSpec, TopicFieldSpec

__all__ = [
    "DecodedEvent",
    "decode_log",
    "to_raw_position_event",
    "event_spec_from_signature",
    "make_nfpm_registry",
    "make_registry",
    "DataFieldSpec",
    "EventRegistry",
    "EventSpec",
    "TopicFieldSpec",
]
