"""Courier adapters."""
from .courier_guy_client import CourierGuyClient

__all__ = ["CourierGuyClient"]
