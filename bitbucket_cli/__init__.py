"""
Bitbucket CLI - Three-layer client for the Bitbucket Server REST API.

Layers:
- core: Request pipeline, error taxonomy and raw types
- sdk: High-level BitbucketClient with project and repository operations
- cli: Opinionated command-line interface
"""

from bitbucket_cli.sdk import BitbucketClient

__version__ = "0.1.0"
__all__ = ["BitbucketClient"]
