"""Loyalty backend services: members, ledger, vouchers and the points rule."""

from .ledger import INSUFFICIENT_BALANCE, LedgerPoster  # noqa: F401
from .member_resolver import MemberResolver, normalize_phone  # noqa: F401
from .points import calculate_points  # noqa: F401
from .program import LoyaltyProgram, LoyaltyProgramNotFoundError  # noqa: F401
from .salesforce_client import SalesforceClient, soql_literal  # noqa: F401
from .vouchers import VoucherService  # noqa: F401
