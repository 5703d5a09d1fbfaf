"""
Transformation Module

Schema validation and normalization of Shopify payloads into canonical
records, plus the decimal money helpers shared with the metrics jobs.
"""
from .normalizers import EntityNormalizer, NormalizationResult, NormalizedOrder
from .money import to_decimal, quantize_money, percentage, split_tags

__all__ = [
    "EntityNormalizer",
    "NormalizationResult",
    "NormalizedOrder",
    "to_decimal",
    "quantize_money",
    "percentage",
    "split_tags",
]
