"""
Link and access-code extraction.

- patterns: injected provider table (config/providers.yaml)
- links: share-link candidates with offsets
- credentials: keyword-triggered access codes with offsets
- association: pairing access codes with links
"""

from panlink.extractor.association import Association, ScoringWeights, associate
from panlink.extractor.credentials import CredentialResolver
from panlink.extractor.links import Extractor
from panlink.extractor.patterns import (
    ProviderTable,
    get_provider_table,
    load_provider_table,
    reset_provider_table,
)

__all__ = [
    "Association",
    "ScoringWeights",
    "associate",
    "CredentialResolver",
    "Extractor",
    "ProviderTable",
    "get_provider_table",
    "load_provider_table",
    "reset_provider_table",
]
