"""
Loader for the asset manifest written by the frontend build.

Only the ``entrypoints`` key is read. The resulting tuple is handed to the
router once at startup and never changes afterwards.
"""

import logging
from typing import List, Tuple

from pydantic import BaseModel, StrictStr, ValidationError

from frontdoor.errors import ManifestError

logger = logging.getLogger("uvicorn.error")


class AssetManifest(BaseModel):
    entrypoints: List[StrictStr] = []


def parse_manifest(raw: bytes, source: str = "<manifest>") -> Tuple[str, ...]:
    """Validate manifest JSON and return its entrypoints in declared order."""
    try:
        manifest = AssetManifest.model_validate_json(raw)
    except ValidationError as e:
        raise ManifestError(f"Invalid asset manifest {source}: {e}") from e

    if "entrypoints" not in manifest.model_fields_set:
        logger.warning(f"Asset manifest {source} has no entrypoints, nothing will be pushed")

    return tuple(manifest.entrypoints)


def load_manifest(path: str) -> Tuple[str, ...]:
    """
    Read the manifest at ``path``.

    Raises:
        ManifestError: the file is missing, unreadable or not a valid manifest.
    """
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as e:
        raise ManifestError(f"Cannot read asset manifest {path}: {e}") from e

    entrypoints = parse_manifest(raw, source=path)
    logger.info(f"Loaded {len(entrypoints)} entrypoints from {path}")
    return entrypoints
