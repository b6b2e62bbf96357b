"""Certificate authority client contract.

Exports the abstract client and the order/authorization value types it
exchanges with the pipeline.
"""

from acmerenew.ca.base import (
    Authorization,
    CertificateAuthorityClient,
    ChallengeDetails,
    OrderHandle,
    PendingIssuance,
)

__all__ = [
    "Authorization",
    "CertificateAuthorityClient",
    "ChallengeDetails",
    "OrderHandle",
    "PendingIssuance",
]
