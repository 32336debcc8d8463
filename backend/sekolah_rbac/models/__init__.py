from sekolah_rbac.models.blob import StoredBlob

__all__ = ["StoredBlob"]
