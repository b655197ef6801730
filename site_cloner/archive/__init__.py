# site_cloner/archive/__init__.py
"""Offline archive assembly: URL rewriting, support files and ZIP packaging."""
from site_cloner.archive.assembler import ArchiveAssembler, AssetMap, DirectorySink, build_asset_map

__all__ = ["ArchiveAssembler", "AssetMap", "DirectorySink", "build_asset_map"]
