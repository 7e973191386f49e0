"""Local execution module for deploying on the current machine."""

from .client import LOCAL_ADDRESSES, LocalExecutionClient

__all__ = ["LOCAL_ADDRESSES", "LocalExecutionClient"]
