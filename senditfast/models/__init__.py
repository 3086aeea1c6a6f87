from .audit_log import AuditActions, AuditLog
from .branding import Branding
from .file_object import FileObject
from .recipient import DeliveryStatus, Recipient
from .transfer import Transfer, TransferStatus
from .upload_session import UploadSession, UploadStatus
from .user import User

__all__ = [
    "AuditActions",
    "AuditLog",
    "Branding",
    "DeliveryStatus",
    "FileObject",
    "Recipient",
    "Transfer",
    "TransferStatus",
    "UploadSession",
    "UploadStatus",
    "User",
]
