"""Desktop viewer for a cosine-similarity COG served by a TiTiler tile server."""

__version__ = "0.1.0"
