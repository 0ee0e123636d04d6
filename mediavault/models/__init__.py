from mediavault.models.storage import Bucket, Dimension, File, FileInstance, FileLocation

__all__ = [
    "Bucket",
    "Dimension",
    "File",
    "FileInstance",
    "FileLocation",
]
