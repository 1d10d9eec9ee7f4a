"""
Account Provisioner

Turns configured account descriptors into registered accounts.

Design Considerations:
- Log-and-continue: one bad credential never blocks the remaining accounts
- Provider exclusion is a policy decision, not an error
- Normalisation (id, label, port, TLS, active flag) happens here, so the
  ingestion source only ever sees complete accounts
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from onebox.config.settings import DEFAULT_IMAP_PORT
from onebox.exceptions import AccountRegistrationError, ProviderExcludedError
from onebox.interfaces import IngestionSource
from onebox.models import Account, AccountDescriptor

logger = logging.getLogger(__name__)


class ProviderPolicy:
    """Case-insensitive host substring denylist."""

    def __init__(self, excluded: Iterable[str] = ("yahoo",)):
        self.excluded = [item.lower() for item in excluded if item]

    def excluded_by(self, host: str) -> Optional[str]:
        """Return the matching denylist entry, or None when the host is allowed."""
        host = (host or "").lower()
        for provider in self.excluded:
            if provider in host:
                return provider
        return None


@dataclass
class ProvisioningReport:
    registered: List[str] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)

    def to_dict(self):
        return {
            "registered": list(self.registered),
            "skipped": [{"label": label, "reason": reason} for label, reason in self.skipped],
            "failed": [{"label": label, "error": error} for label, error in self.failed],
        }


class AccountProvisioner:
    """
    Registers configured accounts with the ingestion source.

    Args:
        source: Ingestion source owning the account registry
        policy: Provider exclusion policy
    """

    def __init__(self, source: IngestionSource, policy: Optional[ProviderPolicy] = None):
        self.source = source
        self.policy = policy or ProviderPolicy()

    @staticmethod
    def normalize(descriptor: AccountDescriptor, index: int) -> Account:
        """
        Complete a descriptor into an account.

        Args:
            descriptor: Configured account
            index: 1-based configuration position, used for the default label

        Returns:
            Account with id, label and port filled in, TLS on and active
        """
        return Account(
            id=descriptor.id or str(uuid.uuid4()),
            label=descriptor.label or f"Account {index}",
            user=descriptor.user,
            host=descriptor.host,
            port=descriptor.port or DEFAULT_IMAP_PORT,
            tls=True,
            is_active=True,
        )

    async def provision(
        self,
        configured: Sequence[Tuple[AccountDescriptor, str]]
    ) -> ProvisioningReport:
        """
        Register every configured account that passes the provider policy.

        Args:
            configured: (descriptor, secret) pairs in configuration order

        Returns:
            ProvisioningReport listing registered, skipped and failed accounts
        """
        report = ProvisioningReport()

        for index, (descriptor, secret) in enumerate(configured, start=1):
            label = descriptor.label or f"Account {index}"
            provider = self.policy.excluded_by(descriptor.host)
            if provider:
                logger.info(f"Skipping account {label}: provider '{provider}' is excluded ({descriptor.host})")
                report.skipped.append((label, f"excluded provider: {provider}"))
                continue

            account = self.normalize(descriptor, index)
            try:
                await self.source.register_account(account, secret)
            except Exception as e:
                logger.error(f"❌ Failed to register account {account.label}: {e}")
                report.failed.append((account.label, str(e)))
                continue

            logger.info(f"✓ Account {account.label} registered")
            report.registered.append(account.id)

        if not report.registered and not report.failed:
            logger.warning("⚠ No email accounts to provision; running with no active accounts")
        else:
            logger.info(
                f"Provisioning complete: {len(report.registered)} registered, "
                f"{len(report.skipped)} skipped, {len(report.failed)} failed"
            )
        return report

    async def provision_one(self, descriptor: AccountDescriptor, secret: str) -> Account:
        """
        Register a single account on request.

        Raises:
            ProviderExcludedError: If the host belongs to an excluded provider
            AccountRegistrationError: If registration fails
        """
        index = len(self.source.list_accounts()) + 1
        account = self.normalize(descriptor, index)
        provider = self.policy.excluded_by(descriptor.host)
        if provider:
            raise ProviderExcludedError(account.label, provider)

        try:
            await self.source.register_account(account, secret)
        except AccountRegistrationError:
            raise
        except Exception as e:
            raise AccountRegistrationError(account.label, str(e)) from e

        logger.info(f"Account {account.label} added")
        return account
