from typing import Optional

from budgetbook.auth import AuthProvider
from budgetbook.config import Settings
from budgetbook.domain import User
from budgetbook.errors import NotAuthenticatedError
from budgetbook.logging_setup import get_logger
from budgetbook.persistence import Repository
from budgetbook.services import FinanceService
from budgetbook.store import FinanceStore

logger = get_logger("budgetbook.session")


class SessionGate:
    """Binds one ``FinanceStore`` to whoever is signed in.

    The store is emptied before every load, so a new identity never sees the
    previous one's data, and every load replaces all five collections. The
    previous identity's service is closed first, so its writes still in
    flight never land in the next snapshot.
    """

    def __init__(
        self,
        auth: AuthProvider,
        repository: Repository,
        store: Optional[FinanceStore] = None,
        settings: Optional[Settings] = None,
    ):
        self.auth = auth
        self.repository = repository
        self.store = store or FinanceStore()
        self.settings = settings or Settings()
        self._service: Optional[FinanceService] = None

    def current_user(self) -> Optional[User]:
        return self.auth.current_user()

    @property
    def service(self) -> FinanceService:
        user = self.auth.current_user()
        if user is None or self._service is None or self._service.owner_id != user.id:
            raise NotAuthenticatedError()
        return self._service

    def _close(self) -> None:
        if self._service is not None:
            self._service.close()
        self._service = None
        self.store.clear()

    async def _open(self, user: User) -> FinanceService:
        self._close()
        self._service = FinanceService(self.store, self.repository, user.id, self.settings)
        await self._service.refresh()
        logger.info("loaded session for user %s", user.id)
        return self._service

    async def sign_up(self, email: str, password: str, name: str) -> User:
        user = self.auth.sign_up(email, password, name)
        await self._open(user)
        return user

    async def sign_in(self, email: str, password: str) -> User:
        user = self.auth.sign_in(email, password)
        await self._open(user)
        return user

    def sign_out(self) -> None:
        self.auth.sign_out()
        self._close()

    async def resume(self) -> Optional[User]:
        """Reload the snapshot of the signed-in user; clear it when nobody is."""
        user = self.auth.current_user()
        if user is None:
            self._close()
            return None
        if self._service is None or self._service.owner_id != user.id:
            await self._open(user)
        else:
            await self._service.refresh()
        return user
