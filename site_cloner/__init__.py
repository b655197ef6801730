# site_cloner/__init__.py
"""
SiteCloner package initializer.
Defines package version; the CLI lives in site_cloner.cli.
"""
__version__ = "0.1.0"
