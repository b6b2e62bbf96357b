"""PKCS#12 bundle codec and chain assembler."""

from acmerenew.certificates.chain import assemble, thumbprint
from acmerenew.certificates.pfx import PfxBundle

__all__ = ["PfxBundle", "assemble", "thumbprint"]
