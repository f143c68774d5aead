"""
Data Ingestion - Normalizers Package.

Normalizers:
- onchain_normalizer: Decoded lending pool logs -> DomainEvents
"""

from .onchain_normalizer import EventNormalizer
