from .probes import HttpResponse, VerificationProbeFailure, Verifier, VerifyResult
from .tokens import mint_token, probe_identities

__all__ = [
    "HttpResponse",
    "VerificationProbeFailure",
    "Verifier",
    "VerifyResult",
    "mint_token",
    "probe_identities",
]
