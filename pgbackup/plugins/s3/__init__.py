from .plugin import S3Plugin, object_key

__all__ = ["S3Plugin", "object_key"]
