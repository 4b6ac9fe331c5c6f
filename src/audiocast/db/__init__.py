"""Database models and schema helpers."""

from .db_models import AudioFileModel, Base, CredentialModel, PrincipalModel, UploadModel

__all__ = [
    "Base",
    "AudioFileModel",
    "CredentialModel",
    "PrincipalModel",
    "UploadModel",
]
