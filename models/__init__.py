"""Request models for the team resource routes"""
from .team import (
    BrandCreate,
    BrandUpdate,
    FollowerGrowthEntry,
    RecordStatus,
    ShopCreate,
    ShopUpdate,
    SupplierContact,
    SupplierCreate,
    SupplierUpdate,
    update_columns,
)

__all__ = [
    "BrandCreate",
    "BrandUpdate",
    "FollowerGrowthEntry",
    "RecordStatus",
    "ShopCreate",
    "ShopUpdate",
    "SupplierContact",
    "SupplierCreate",
    "SupplierUpdate",
    "update_columns",
]
