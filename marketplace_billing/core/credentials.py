"""
Provider credentials and candidate resolution.

A payment notification does not say which credential scope issued the payment
(publisher-connected account for bookings, platform accounts for
subscriptions), so the resolver produces an ordered list of candidates and
callers try them with ``first_success``.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

from sqlalchemy.orm import Session

from marketplace_billing.core import config
from marketplace_billing.db.models.mercadopago_account import MercadoPagoAccount

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CredentialSet:
    """Platform credentials, built once at process start."""
    subscriptions_access_token: Optional[str] = None
    subscriptions_public_key: Optional[str] = None
    marketplace_access_token: Optional[str] = None

    @classmethod
    def from_config(cls) -> "CredentialSet":
        return cls(
            subscriptions_access_token=config.MP_SUBSCRIPTIONS_ACCESS_TOKEN,
            subscriptions_public_key=config.MP_SUBSCRIPTIONS_PUBLIC_KEY,
            marketplace_access_token=config.MP_MARKETPLACE_ACCESS_TOKEN,
        )

    def __repr__(self):
        # Never print token values
        return (
            "CredentialSet("
            f"subscriptions={'set' if self.subscriptions_access_token else 'missing'}, "
            f"marketplace={'set' if self.marketplace_access_token else 'missing'})"
        )


class AllCandidatesFailed(Exception):
    """Every candidate credential was tried and none succeeded."""

    def __init__(self, errors: List[Tuple[int, str]]):
        self.errors = errors
        if errors:
            summary = "; ".join(f"attempt {index + 1}: {message}" for index, message in errors)
        else:
            summary = "no candidate credentials available"
        super().__init__(summary)


def first_success(candidates: Iterable[str], attempt: Callable[[str], T]) -> Tuple[T, int]:
    """
    Call ``attempt`` with each candidate in order and return the first result.

    Any exception raised by an attempt is recorded and the next candidate is
    tried.

    Returns:
        Tuple of (result, index of the candidate that succeeded)

    Raises:
        AllCandidatesFailed: If the list is empty or every attempt raised
    """
    errors: List[Tuple[int, str]] = []
    for index, candidate in enumerate(candidates):
        try:
            return attempt(candidate), index
        except Exception as e:
            logger.debug(f"Candidate credential {index + 1} failed: {e}")
            errors.append((index, str(e)))
    raise AllCandidatesFailed(errors)


class CredentialResolver:
    """Builds the ordered candidate list for an inbound notification."""

    def __init__(self, credentials: CredentialSet, db: Session):
        self.credentials = credentials
        self.db = db

    def publisher_token(self, mercadopago_user_id) -> Optional[str]:
        if not mercadopago_user_id:
            return None
        account = self.db.query(MercadoPagoAccount).filter(
            MercadoPagoAccount.mercadopago_user_id == str(mercadopago_user_id),
            MercadoPagoAccount.is_active.is_(True),
        ).first()
        if not account:
            logger.info(f"No connected publisher account for mercadopago_user_id={mercadopago_user_id}")
            return None
        return account.access_token

    def candidates(self, notification: dict) -> List[str]:
        """
        Ordered candidates: publisher token (if the originating provider user is
        a connected publisher), marketplace token, subscriptions token.
        Duplicates and unset tokens are dropped.
        """
        ordered = [
            self.publisher_token((notification or {}).get("user_id")),
            self.credentials.marketplace_access_token,
            self.credentials.subscriptions_access_token,
        ]
        result: List[str] = []
        for token in ordered:
            if token and token not in result:
                result.append(token)
        return result

    def subscription_candidates(self) -> List[str]:
        """Preapprovals are always created under the subscriptions account."""
        token = self.credentials.subscriptions_access_token
        return [token] if token else []
