"""Domain models of the renewal pipeline.

All models are frozen dataclasses.  Use :func:`dataclasses.replace`
for modifications (copy-on-write).
"""

from acmerenew.models.certificate import CertificateInfo
from acmerenew.models.order import MAIN_ORDER, OrderOutcome, OrderPlan
from acmerenew.models.renewal import PluginOptions, Renewal, renewal_from_dict
from acmerenew.models.result import OrderResult, RenewResult
from acmerenew.models.target import Target, TargetPart

__all__ = [
    "MAIN_ORDER",
    "CertificateInfo",
    "OrderOutcome",
    "OrderPlan",
    "OrderResult",
    "PluginOptions",
    "RenewResult",
    "Renewal",
    "Target",
    "TargetPart",
    "renewal_from_dict",
]
