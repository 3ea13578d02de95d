"""
IdentityReconciler - merges accounts and cloud identities.

Accounts may be created in the relational store (local registration) or in
the cloud identity store (mobile sign-up). Reconciliation links the two sets
by email first, then by cloud subject id, and creates whatever is missing on
either side. It is idempotent: a second run with no changes in between only
reports skipped items.

Email matching is racy across concurrent registrations; the schema's unique
constraints turn a lost race into a skipped item rather than a duplicate.
"""

import logging
from typing import Dict, List, Optional, Tuple

from .accounts import AccountRepository
from .cloud import CloudIdentityAPI
from .errors import ConflictSkipped, PartialBatchError, ReconciliationUnavailableError
from .models import Account, CloudIdentity, SyncDirection, split_display_name
from .report import DirectionCounters, IdentityReconciliationResult

logger = logging.getLogger(__name__)


def _email_key(email: Optional[str]) -> Optional[str]:
    return email.strip().lower() if email else None


class _AccountIndex:
    """In-memory lookup of accounts by email and subject id for one run."""

    def __init__(self, accounts: List[Account]):
        self.accounts: List[Account] = []
        self.by_email: Dict[str, Account] = {}
        self.by_subject: Dict[str, Account] = {}
        for account in accounts:
            self.put(account)

    def put(self, account: Account) -> None:
        existing = self.by_email.get(_email_key(account.email) or "")
        if existing is None:
            self.accounts.append(account)
        else:
            self.accounts[self.accounts.index(existing)] = account
        self.by_email[_email_key(account.email) or ""] = account
        if account.cloud_subject_id:
            self.by_subject[account.cloud_subject_id] = account

    def match(self, email: Optional[str], subject_id: Optional[str]) -> Optional[Account]:
        key = _email_key(email)
        if key and key in self.by_email:
            return self.by_email[key]
        if subject_id and subject_id in self.by_subject:
            return self.by_subject[subject_id]
        return None


class IdentityReconciler:
    """
    Bidirectional account sync between the relational store and the cloud.

    Per-identity failures are counted and the loop moves on; only a failure
    to fetch one of the full listings aborts the run, before anything is
    written.
    """

    def __init__(
        self,
        accounts: AccountRepository,
        identity_api: CloudIdentityAPI,
        page_size: int = 1000,
    ):
        self.accounts = accounts
        self.identity_api = identity_api
        self.page_size = page_size

    async def fetch_cloud_identities(self) -> List[CloudIdentity]:
        """Walk every page of the cloud identity listing."""
        identities: List[CloudIdentity] = []
        seen_tokens = set()
        page_token: Optional[str] = None

        while True:
            page = await self.identity_api.list_users(self.page_size, page_token)
            identities.extend(page.users)
            page_token = page.next_page_token
            if not page_token:
                break
            if page_token in seen_tokens:
                logger.warning("Cloud listing returned a repeated page token, stopping")
                break
            seen_tokens.add(page_token)

        return identities

    async def _fetch_both(self) -> Tuple[List[Account], List[CloudIdentity]]:
        try:
            local_accounts = await self.accounts.list_all()
        except Exception as e:
            logger.error(f"Failed to list local accounts: {e}")
            raise ReconciliationUnavailableError(f"Local account listing failed: {e}") from e

        try:
            identities = await self.fetch_cloud_identities()
        except Exception as e:
            logger.error(f"Failed to list cloud identities: {e}")
            raise ReconciliationUnavailableError(f"Cloud identity listing failed: {e}") from e

        return local_accounts, identities

    async def reconcile_identities(
        self, direction: SyncDirection = SyncDirection.BOTH
    ) -> IdentityReconciliationResult:
        """
        Reconcile accounts with cloud identities.

        Args:
            direction: Which halves to run; cloud-to-local runs first

        Returns:
            Per-direction counters and the size of both listings

        Raises:
            ReconciliationUnavailableError: A full listing could not be fetched
        """
        local_accounts, identities = await self._fetch_both()
        result = IdentityReconciliationResult(
            total_cloud=len(identities), total_local=len(local_accounts)
        )
        index = _AccountIndex(local_accounts)

        logger.info(
            f"Reconciling identities ({direction.value}): "
            f"{len(identities)} cloud, {len(local_accounts)} local"
        )

        if direction.includes_cloud_to_local:
            await self._cloud_to_local(identities, index, result.cloud_to_local)

        if direction.includes_local_to_cloud:
            await self._local_to_cloud(identities, local_accounts, index, result.local_to_cloud)

        logger.info(
            "Identity reconciliation done: "
            f"cloud->local {result.cloud_to_local.added} added / "
            f"{result.cloud_to_local.skipped} skipped / {result.cloud_to_local.errors} errors, "
            f"local->cloud {result.local_to_cloud.added} added / "
            f"{result.local_to_cloud.skipped} skipped / {result.local_to_cloud.errors} errors"
        )
        return result

    async def _cloud_to_local(
        self,
        identities: List[CloudIdentity],
        index: _AccountIndex,
        counters: DirectionCounters,
    ) -> None:
        for identity in identities:
            try:
                if await self._import_identity(identity, index):
                    counters.added += 1
                else:
                    counters.skipped += 1
            except Exception as e:
                logger.error(f"Failed to import cloud identity {identity.subject_id}: {e}")
                counters.record_error(identity.subject_id, e)

    async def _import_identity(self, identity: CloudIdentity, index: _AccountIndex) -> bool:
        """Returns True when a new account was created."""
        match = index.match(identity.email, identity.subject_id)

        if match is not None:
            if match.cloud_subject_id is None:
                await self._attach(match, identity.subject_id, index)
            elif match.cloud_subject_id != identity.subject_id:
                logger.warning(
                    f"Account {match.id} ({match.email}) is linked to "
                    f"{match.cloud_subject_id}, not {identity.subject_id}"
                )
            return False

        if not identity.email:
            logger.debug(f"Cloud identity {identity.subject_id} has no email, skipping")
            return False

        given_name, family_name = split_display_name(identity.display_name)
        try:
            account = await self.accounts.create(
                email=identity.email,
                display_name=identity.display_name or "",
                given_name=given_name,
                family_name=family_name,
                cloud_subject_id=identity.subject_id,
                created_from_cloud=True,
            )
        except ConflictSkipped:
            # Created concurrently since the listing was fetched
            existing = await self.accounts.find_by_email(identity.email)
            if existing is not None:
                index.put(existing)
            return False

        index.put(account)
        logger.info(f"Created account {account.id} from cloud identity {identity.subject_id}")
        return True

    async def _attach(self, account: Account, subject_id: str, index: _AccountIndex) -> None:
        try:
            await self.accounts.attach_subject_id(account.id, subject_id)
        except ConflictSkipped as e:
            logger.warning(f"Could not attach {subject_id} to account {account.id}: {e}")
            return
        account.cloud_subject_id = subject_id
        index.put(account)

    async def _local_to_cloud(
        self,
        identities: List[CloudIdentity],
        local_accounts: List[Account],
        index: _AccountIndex,
        counters: DirectionCounters,
    ) -> None:
        cloud_by_email = {
            _email_key(identity.email): identity for identity in identities if identity.email
        }

        # Only accounts from the listing; ones imported this run are already linked
        for listed in local_accounts:
            account = index.by_email.get(_email_key(listed.email) or "", listed)
            if account.cloud_subject_id:
                counters.skipped += 1
                continue

            try:
                if await self._export_account(account, cloud_by_email, index):
                    counters.added += 1
                else:
                    counters.skipped += 1
            except Exception as e:
                logger.error(f"Failed to export account {account.id} ({account.email}): {e}")
                counters.record_error(str(account.id), e)

    async def _export_account(
        self,
        account: Account,
        cloud_by_email: Dict[Optional[str], CloudIdentity],
        index: _AccountIndex,
    ) -> bool:
        """Returns True when a new cloud identity was created."""
        existing = cloud_by_email.get(_email_key(account.email))
        if existing is None:
            existing = await self.identity_api.get_user_by_email(account.email)

        if existing is not None:
            await self._attach(account, existing.subject_id, index)
            return False

        subject_id = await self.identity_api.create_user(
            account.email, account.display_name or None
        )
        try:
            updated = await self.accounts.attach_subject_id(account.id, subject_id)
        except Exception as e:
            # Cloud user exists now; the next run will find it by email
            raise PartialBatchError(str(account.id), e) from e
        if not updated:
            raise PartialBatchError(
                str(account.id), RuntimeError("account was linked concurrently")
            )

        account.cloud_subject_id = subject_id
        index.put(account)
        logger.info(f"Created cloud identity {subject_id} for account {account.id}")
        return True

    async def link_cloud_identity(self, identity: CloudIdentity) -> Account:
        """
        Return the account for a cloud identity signing in, creating it if needed.

        Raises:
            PartialBatchError: The account could not be saved locally
        """
        account = await self.accounts.find_by_subject_id(identity.subject_id)
        if account is not None:
            return account

        if identity.email:
            account = await self.accounts.find_by_email(identity.email)
            if account is not None:
                if account.cloud_subject_id is None:
                    try:
                        if await self.accounts.attach_subject_id(account.id, identity.subject_id):
                            account.cloud_subject_id = identity.subject_id
                    except ConflictSkipped as e:
                        logger.warning(f"Subject {identity.subject_id} already linked: {e}")
                return account
        else:
            raise PartialBatchError(identity.subject_id, ValueError("identity has no email"))

        given_name, family_name = split_display_name(identity.display_name)
        try:
            return await self.accounts.create(
                email=identity.email,
                display_name=identity.display_name or "",
                given_name=given_name,
                family_name=family_name,
                cloud_subject_id=identity.subject_id,
                created_from_cloud=True,
            )
        except ConflictSkipped:
            existing = await self.accounts.find_by_email(identity.email)
            if existing is not None:
                return existing
            raise PartialBatchError(
                identity.subject_id, RuntimeError("account conflict without a match")
            )
        except Exception as e:
            logger.error(f"Local save failed for cloud identity {identity.subject_id}: {e}")
            raise PartialBatchError(identity.subject_id, e) from e
