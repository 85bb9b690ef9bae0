from lendops.domain.funds.models.capital import CapitalCall, CapitalReturn, FundLoanAllocation
from lendops.domain.funds.models.commitments import FundCommitment
from lendops.domain.funds.models.distributions import DistributionLine, FundDistribution
from lendops.domain.funds.models.fund import Fund

__all__ = [
    "CapitalCall",
    "CapitalReturn",
    "DistributionLine",
    "Fund",
    "FundCommitment",
    "FundDistribution",
    "FundLoanAllocation",
]
