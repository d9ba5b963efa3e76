"""Piped catalog provider integration."""

from piped.client import PipedClient, ProviderError
from piped.selector import ProviderSelector

__all__ = ["PipedClient", "ProviderError", "ProviderSelector"]
