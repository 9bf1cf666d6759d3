"""Reference producer adapters: payload files and an HTTP producer service."""

from __future__ import annotations

from .client import HttpProducerImporter, discover_http_importers
from .files import JsonDirectoryImporter, load_directory_importers, read_payload
from .schema import (
    EvidencePayload,
    ImporterDescriptor,
    ImporterIndex,
    ProducerPayload,
    ProposalPayload,
)
from .translator import to_proposal, to_proposals

__all__ = [
    "EvidencePayload",
    "HttpProducerImporter",
    "ImporterDescriptor",
    "ImporterIndex",
    "JsonDirectoryImporter",
    "ProducerPayload",
    "ProposalPayload",
    "discover_http_importers",
    "load_directory_importers",
    "read_payload",
    "to_proposal",
    "to_proposals",
]
