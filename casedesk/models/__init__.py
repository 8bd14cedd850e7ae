from .user import User, ContractorProfile, ContractorSpecialty
from .organization import Organization, ApprovalPolicy, FavoriteContractor, ContractorOrgLink
from .case import Case, CaseStatus
from .quote import Quote, QuoteStatus, CounterProposal, CounterStatus
