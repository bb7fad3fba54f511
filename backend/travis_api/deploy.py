"""
Travis API — Deploy Metadata
==============================

The deploy SHA identifies the running release. It namespaces the response
cache, tags Sentry events and is reported by /health. Deploy tooling writes
it to .deploy-sha; a checkout without that file reports "deploy-sha".
"""

from functools import lru_cache
from pathlib import Path

from travis_api.config import Settings

DEFAULT_DEPLOY_SHA = "deploy-sha"


# What: Read once per path; the file only changes with a new release
@lru_cache(maxsize=None)
def _read_deploy_sha(path: str) -> str:
    file = Path(path)
    if not file.is_file():
        return DEFAULT_DEPLOY_SHA
    return file.read_text().strip()[:8] or DEFAULT_DEPLOY_SHA


def deploy_sha(config: Settings) -> str:
    """First 8 characters of the deployed commit, read once per path."""
    return _read_deploy_sha(config.deploy_sha_path)
