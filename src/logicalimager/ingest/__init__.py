# src/logicalimager/ingest/__init__.py

"""
Acquisition ingestion for logicalimager.
Reads the triage manifest and adds extracted files or virtual-disk images
to the case repository.
"""

from .images import ImageFileEntry, MultiImageIngestTask, read_image_files
from .local_files import LocalFileImporter, import_local_files
from .manifest import ManifestRow, read_manifest, synthetic_parent_path

__all__ = [
    "ImageFileEntry",
    "MultiImageIngestTask",
    "read_image_files",
    "LocalFileImporter",
    "import_local_files",
    "ManifestRow",
    "read_manifest",
    "synthetic_parent_path",
]
