"""Spotify integration modules."""

from spotify.client import SpotifySearchClient
from spotify.search import SpotifySearchError, SpotifySearchService

__all__ = ["SpotifySearchClient", "SpotifySearchError", "SpotifySearchService"]
