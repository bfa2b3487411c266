"""
gemfury-to-npm: republish Gemfury-hosted npm packages to the npm registry

Copies every version present on Gemfury but missing on npm, after stripping
the package.json fields that would block the publish.
"""

try:
    from importlib.metadata import version
    __version__ = version("gemfury-to-npm")
except Exception:
    __version__ = "0.0.0"  # Fallback for development

__all__ = ["__version__"]
