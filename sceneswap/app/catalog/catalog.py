"""
Scene catalog.

The catalog is static data: an ordered list of named scene images read
from a directory on disk. It is loaded once per process and shared
read-only across requests. Order is significant; it is the page order
of every generated document.

A scene whose file is absent is still part of the catalog. It is
flagged ``asset_available=False`` so that strategies depending on the
base image decline and the batch still yields one artifact for it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

from sceneswap.app.schemas.batch import SceneDescriptor

logger = logging.getLogger("sceneswap.catalog")


class SceneCatalog:
    """Immutable, ordered collection of scene descriptors."""

    def __init__(
        self,
        scenes_dir: Path,
        scenes: Sequence[SceneDescriptor],
    ) -> None:
        names = [scene.name for scene in scenes]
        if len(set(names)) != len(names):
            raise ValueError("Scene names must be unique within a catalog")

        self.scenes_dir = Path(scenes_dir)
        self._scenes = tuple(scenes)  # freeze order
        self._by_name: Dict[str, SceneDescriptor] = {
            scene.name: scene for scene in self._scenes
        }

    def __len__(self) -> int:
        return len(self._scenes)

    def __iter__(self) -> Iterator[SceneDescriptor]:
        return iter(self._scenes)

    @property
    def scenes(self) -> List[SceneDescriptor]:
        return list(self._scenes)

    def get(self, name: str) -> Optional[SceneDescriptor]:
        return self._by_name.get(name)

    def asset_path(self, scene: SceneDescriptor) -> Path:
        return self.scenes_dir / scene.name

    def read_asset(self, scene: SceneDescriptor) -> Optional[bytes]:
        """
        Return the scene's base image bytes, or None if unavailable.

        A file removed after startup reads as missing rather than failing.
        """
        if not scene.asset_available:
            return None

        try:
            return self.asset_path(scene).read_bytes()
        except OSError:
            logger.warning(
                "scene_asset_unreadable",
                extra={"scene": scene.name},
            )
            return None


def load_scene_catalog(
    scenes_dir: Path,
    scene_names: Sequence[str],
) -> SceneCatalog:
    """
    Build the catalog, probing each scene file exactly once.
    """
    scenes_dir = Path(scenes_dir)
    descriptors = [
        SceneDescriptor(
            name=name,
            asset_available=(scenes_dir / name).is_file(),
        )
        for name in scene_names
    ]

    missing = [d.name for d in descriptors if not d.asset_available]
    if missing:
        logger.warning(
            "scene_assets_missing",
            extra={
                "scenes_dir": str(scenes_dir),
                "missing": missing,
            },
        )

    logger.info(
        "scene_catalog_loaded",
        extra={
            "scene_count": len(descriptors),
            "available": len(descriptors) - len(missing),
        },
    )
    return SceneCatalog(scenes_dir=scenes_dir, scenes=descriptors)
