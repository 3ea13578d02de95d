"""
Cloud store adapters (Firebase Auth + Firestore).

The firebase-admin SDK is blocking, so every call runs in a worker thread
and is bounded by the configured request timeout. SDK failures surface as
StoreUnreachableError so callers can fall back or count the error.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp
import firebase_admin
from firebase_admin import auth, credentials, firestore
from firebase_admin.exceptions import FirebaseError
from google.api_core.exceptions import GoogleAPIError
from google.cloud.firestore_v1.base_query import FieldFilter

from ..config import SyncConfig
from .errors import StoreUnreachableError
from .models import CloudIdentity, CloudUserPage

logger = logging.getLogger(__name__)


@dataclass
class CloudDocument:
    """Firestore document id and body."""

    id: str
    data: Dict[str, Any]


class CloudIdentityAPI(ABC):
    """Contract for the cloud identity provider."""

    @abstractmethod
    async def list_users(
        self, page_size: int = 1000, page_token: Optional[str] = None
    ) -> CloudUserPage:
        """Return one page of users and the token of the next page, if any."""
        pass

    @abstractmethod
    async def create_user(self, email: str, display_name: Optional[str] = None) -> str:
        """
        Create a user without password and return its subject id.

        The user has to go through the credential reset flow before signing in.
        """
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[CloudIdentity]:
        """Return the user with this email or None when not found."""
        pass


class CloudDocumentStore(ABC):
    """Contract for the cloud document store."""

    @abstractmethod
    async def add_document(
        self, collection: str, payload: Dict[str, Any], document_id: Optional[str] = None
    ) -> str:
        """
        Store a document and return its id.

        With an explicit document_id the write is a merge, so repeating it
        never creates a second document.
        """
        pass

    @abstractmethod
    async def query(
        self, collection: str, filters: Optional[List[Tuple[str, str, Any]]] = None
    ) -> List[CloudDocument]:
        """Return documents matching every (field, op, value) filter."""
        pass

    @abstractmethod
    async def update_document(
        self, collection: str, document_id: str, patch: Dict[str, Any]
    ) -> None:
        """Apply a partial update to one document."""
        pass


def init_firebase(config: SyncConfig) -> firebase_admin.App:
    """Initialize the default Firebase app once and return it."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    if not config.firebase_credentials_path:
        raise StoreUnreachableError("cloud", "Firebase credentials path is not configured")

    cred = credentials.Certificate(config.firebase_credentials_path)
    options = {"projectId": config.firebase_project_id} if config.firebase_project_id else None
    app = firebase_admin.initialize_app(cred, options)
    logger.info(f"Firebase app initialized for project {app.project_id}")
    return app


class _FirebaseCaller:
    """Runs blocking SDK calls off the event loop with a timeout."""

    def __init__(self, timeout: float):
        self.timeout = timeout

    async def _run(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, **kwargs), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"Cloud call timed out: {operation}")
            raise StoreUnreachableError("cloud", f"timeout on {operation}")
        except (FirebaseError, GoogleAPIError) as e:
            logger.error(f"Cloud call failed: {operation}: {e}")
            raise StoreUnreachableError("cloud", f"{operation}: {e}") from e


def _to_identity(user: Any) -> CloudIdentity:
    created_at = None
    metadata = getattr(user, "user_metadata", None)
    timestamp = getattr(metadata, "creation_timestamp", None) if metadata else None
    if timestamp:
        created_at = datetime.fromtimestamp(timestamp / 1000)
    return CloudIdentity(
        subject_id=user.uid,
        email=user.email,
        display_name=user.display_name,
        created_at=created_at,
    )


class FirebaseIdentityClient(_FirebaseCaller, CloudIdentityAPI):
    """Firebase Auth implementation of CloudIdentityAPI."""

    def __init__(self, app: firebase_admin.App, timeout: float = 10.0):
        super().__init__(timeout)
        self.app = app

    async def list_users(
        self, page_size: int = 1000, page_token: Optional[str] = None
    ) -> CloudUserPage:
        page = await self._run(
            "list_users",
            auth.list_users,
            page_token=page_token,
            max_results=page_size,
            app=self.app,
        )
        return CloudUserPage(
            users=[_to_identity(user) for user in page.users],
            next_page_token=page.next_page_token or None,
        )

    async def create_user(self, email: str, display_name: Optional[str] = None) -> str:
        kwargs: Dict[str, Any] = {"email": email, "app": self.app}
        # Firebase rejects an empty display name
        if display_name:
            kwargs["display_name"] = display_name
        user = await self._run("create_user", auth.create_user, **kwargs)
        logger.info(f"Created cloud user {user.uid} for {email}")
        return str(user.uid)

    async def get_user_by_email(self, email: str) -> Optional[CloudIdentity]:
        try:
            user = await self._run(
                "get_user_by_email", auth.get_user_by_email, email, app=self.app
            )
        except StoreUnreachableError as e:
            if isinstance(e.__cause__, auth.UserNotFoundError):
                return None
            raise
        return _to_identity(user)


class FirestoreDocumentStore(_FirebaseCaller, CloudDocumentStore):
    """Firestore implementation of CloudDocumentStore."""

    def __init__(self, app: firebase_admin.App, timeout: float = 10.0):
        super().__init__(timeout)
        self.client = firestore.client(app)

    async def add_document(
        self, collection: str, payload: Dict[str, Any], document_id: Optional[str] = None
    ) -> str:
        if document_id:
            doc_ref = self.client.collection(collection).document(document_id)
            await self._run(f"set {collection}/{document_id}", doc_ref.set, payload, merge=True)
            return document_id

        _, doc_ref = await self._run(
            f"add {collection}", self.client.collection(collection).add, payload
        )
        return str(doc_ref.id)

    async def query(
        self, collection: str, filters: Optional[List[Tuple[str, str, Any]]] = None
    ) -> List[CloudDocument]:
        query: Any = self.client.collection(collection)
        for field_path, op, value in filters or []:
            query = query.where(filter=FieldFilter(field_path, op, value))

        def _fetch() -> List[CloudDocument]:
            return [CloudDocument(id=snap.id, data=snap.to_dict() or {}) for snap in query.stream()]

        return await self._run(f"query {collection}", _fetch)

    async def update_document(
        self, collection: str, document_id: str, patch: Dict[str, Any]
    ) -> None:
        doc_ref = self.client.collection(collection).document(document_id)
        await self._run(f"update {collection}/{document_id}", doc_ref.update, patch)


async def probe_cloud(config: SyncConfig) -> bool:
    """
    Check connectivity to the cloud platform.

    Any HTTP answer counts as reachable; an invalid API key still proves
    the network path works.
    """
    timeout = aiohttp.ClientTimeout(total=config.probe_timeout_seconds)
    params = {"key": config.firebase_api_key or "probe"}
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(config.cloud_probe_url, params=params) as response:
                logger.debug(f"Cloud probe answered HTTP {response.status}")
                return True
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.debug(f"Cloud probe failed: {e}")
        return False
