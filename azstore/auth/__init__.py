"""
Request signing for azstore.

Shared Key, Shared Key Lite, bearer token and shared access signature
signers, plus SAS token generation and validation.
"""

from azstore.auth.sas import (
    SASPermission,
    SASResourceType,
    SASService,
    SASToken,
    SASValidationError,
    SASValidator,
    SharedAccessSignature,
    SharedAccessSignatureSigner,
)
from azstore.auth.sharedkey import (
    SharedKeyLiteSigner,
    SharedKeySigner,
    TableSharedKeyLiteSigner,
    TableSharedKeySigner,
)
from azstore.auth.signers import AnonymousSigner, Signer, TokenSigner

__all__ = [
    "AnonymousSigner",
    "SASPermission",
    "SASResourceType",
    "SASService",
    "SASToken",
    "SASValidationError",
    "SASValidator",
    "SharedAccessSignature",
    "SharedAccessSignatureSigner",
    "SharedKeyLiteSigner",
    "SharedKeySigner",
    "Signer",
    "TableSharedKeyLiteSigner",
    "TableSharedKeySigner",
    "TokenSigner",
]
