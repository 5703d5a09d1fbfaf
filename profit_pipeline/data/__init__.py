"""
Synthetic Data Module
"""
from .generators import ShopifyDataset, ShopifyPayloadGenerator, generate_dataset

__all__ = [
    "ShopifyDataset",
    "ShopifyPayloadGenerator",
    "generate_dataset",
]
