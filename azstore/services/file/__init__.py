"""
Azure File Service

Client for Azure File shares, directories and files.
"""

from azstore.services.file.models import Directory, File, Share, ShareNameValidator
from azstore.services.file.service import FileService

__all__ = [
    "Directory",
    "File",
    "FileService",
    "Share",
    "ShareNameValidator",
]
