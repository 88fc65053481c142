"""Auth session engine.

Owns the single Session value of the application and drives the
authorization code + PKCE login through the prompt, the identity
provider gateway and the token record store. Concurrent ``login()``
calls supersede each other: every attempt is tagged with a generation
number and only the attempt matching the current generation may commit
its outcome.
"""

# pylint: disable=logging-too-many-args,too-many-instance-attributes

from __future__ import annotations

import asyncio
import logging

from typing import TYPE_CHECKING

from ..exceptions import (
    AttemptSuperseded,
    AuthenticationError,
    MissingAuthorizationCode,
    NetworkUnreachable,
    ProviderUICancelled,
    StorageFailure,
    TokenExchangeRejected,
)
from ..types import LoginResult, Session, SessionStatus, TokenRecord, freeze_profile
from .pkce import PKCEAttempt


if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from typing import Any

    import httpx

    from ..config import AuthSettings
    from .prompt import AuthorizationPrompt
    from .provider import IdentityProvider
    from .token_store import TokenRecordStore


logger = logging.getLogger("appauth.auth")

# Prompt completions that mean the user walked away from the provider screen
_CANCEL_TYPES = frozenset({"cancel", "dismiss", "locked"})


class SessionManager:
    """Owns the session state machine and its persisted token record.

    Parameters
    ----------
    provider : IdentityProvider
        Gateway to the identity provider.
    record_store : TokenRecordStore
        Persistence for the ``{access_token, profile}`` record.
    prompt : AuthorizationPrompt
        Presents the authorization screen and awaits the redirect.
    revoke_on_logout : bool
        Revoke the access token at the provider after logout
        (default ``True``). Revocation failures are only logged.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        record_store: TokenRecordStore,
        prompt: AuthorizationPrompt,
        revoke_on_logout: bool = True,
    ) -> None:
        """Initialize the session manager."""
        self.provider = provider
        self.record_store = record_store
        self.prompt = prompt
        self.revoke_on_logout = revoke_on_logout

        self._session = Session(is_loading=True)
        self._generation = 0
        self._task: asyncio.Task[Session] | None = None
        self._restore_point: Session | None = None
        self._committed: tuple[int, Session] | None = None
        self._store_lock = asyncio.Lock()
        self._subscribers: list[Callable[[Session], Any]] = []

    # ── Consumer surface ────────────────────────────────────────────

    @property
    def session(self) -> Session:
        """Current read-only session snapshot."""
        return self._session

    @property
    def is_authenticated(self) -> bool:
        """Whether a user is signed in."""
        return self._session.is_authenticated

    @property
    def is_loading(self) -> bool:
        """Whether the persisted record has not been read yet."""
        return self._session.is_loading

    @property
    def user(self) -> Mapping[str, Any] | None:
        """Profile of the signed-in user, if any."""
        return self._session.user

    def get_access_token(self) -> str | None:
        """Return the in-memory access token while authenticated.

        Never performs network or store I/O.

        Returns
        -------
        str or None
            The access token, or None unless the session is authenticated.
        """
        if self._session.status is SessionStatus.AUTHENTICATED:
            return self._session.access_token
        return None

    def subscribe(self, callback: Callable[[Session], Any]) -> Callable[[], None]:
        """Register ``callback`` for every new session snapshot.

        Parameters
        ----------
        callback : callable
            Called with the new Session after each transition.

        Returns
        -------
        callable
            Function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, session: Session) -> None:
        self._session = session
        for callback in list(self._subscribers):
            try:
                callback(session)
            except Exception:
                logger.exception("Session subscriber %r failed", callback)

    # ── Restore ─────────────────────────────────────────────────────

    async def restore_session(self) -> Session:
        """Load the persisted record into the session.

        A complete record yields ``AUTHENTICATED``; an empty, partial or
        unreadable one yields ``UNAUTHENTICATED``. Never raises.

        Returns
        -------
        Session
            The session after the restore.
        """
        generation = self._generation
        try:
            record = await self.record_store.load()
        except StorageFailure:
            logger.exception("Could not read the persisted session; starting signed out")
            record = None

        if generation != self._generation:
            # A login or logout started meanwhile and owns the session now
            self._publish(self._session.evolve(is_loading=False))
            return self._session

        if record is None:
            self._publish(Session(status=SessionStatus.UNAUTHENTICATED))
        else:
            logger.debug("Restored persisted session")
            self._publish(
                Session(
                    status=SessionStatus.AUTHENTICATED,
                    user=record.profile,
                    access_token=record.access_token,
                )
            )
        return self._session

    # ── Login ───────────────────────────────────────────────────────

    def _supersede(self) -> None:
        """Invalidate the in-flight attempt, if any."""
        self._generation += 1
        task = self._task
        self._task = None
        if task is not None and not task.done():
            logger.info("Superseding in-flight login attempt")
            task.cancel()

    async def login(self) -> LoginResult:
        """Run one authorization code + PKCE login.

        Supersedes any attempt still in flight. Never raises for a login
        failure; the outcome is reported on the returned result and on
        the session.

        Returns
        -------
        LoginResult
            ``success`` is True only when the session ended authenticated.
        """
        in_flight = self._task is not None and not self._task.done()
        self._supersede()
        generation = self._generation
        if not in_flight or self._restore_point is None:
            self._restore_point = self._session

        self._publish(
            self._session.evolve(
                status=SessionStatus.AUTHENTICATING,
                is_loading=False,
                error=None,
                error_kind=None,
            )
        )
        task = asyncio.create_task(self._run_attempt(generation))
        self._task = task

        try:
            session = await task
        except asyncio.CancelledError:
            committed = self._committed_session(generation)
            if generation == self._generation:
                if committed is None:
                    # The caller gave up on this attempt
                    self._generation += 1
                    self._fail_cancelled()
                raise
            if committed is not None:
                return LoginResult(True, committed)
            return self._superseded_result()
        except AttemptSuperseded:
            return self._superseded_result()
        except ProviderUICancelled as exc:
            if generation != self._generation:
                return self._superseded_result()
            logger.info("Login cancelled by the user")
            self._fail_cancelled()
            return LoginResult(False, self._session, exc.message, exc.kind)
        except AuthenticationError as exc:
            if generation != self._generation:
                return self._superseded_result()
            self._log_failure(exc)
            self._fail(exc)
            return LoginResult(False, self._session, exc.message, exc.kind)
        except Exception as exc:
            if generation != self._generation:
                return self._superseded_result()
            logger.exception("Login failed unexpectedly")
            error = AuthenticationError(f"Authentication flow failed: {exc}")
            self._fail(error)
            return LoginResult(False, self._session, error.message, error.kind)
        finally:
            if self._task is task:
                self._task = None

        return LoginResult(True, session)

    async def _run_attempt(self, generation: int) -> Session:
        """Drive one attempt from PKCE generation to commit."""
        attempt = PKCEAttempt.generate(self.prompt.redirect_uri)
        provider = self.provider.name
        attempt_id = str(generation)
        logger.debug("Login attempt %s: awaiting authorization", attempt_id)

        outcome = await self.prompt.prompt(self.provider.build_authorize_url(attempt))

        if outcome.type in _CANCEL_TYPES:
            msg = f"Sign-in was cancelled ({outcome.type})"
            raise ProviderUICancelled(msg, provider=provider, attempt_id=attempt_id)
        if not outcome.is_success or outcome.params.get("error"):
            detail = (
                outcome.params.get("error_description")
                or outcome.params.get("error")
                or outcome.type
            )
            msg = f"Authorization did not complete: {detail}"
            raise MissingAuthorizationCode(msg, provider=provider, attempt_id=attempt_id)

        code = outcome.params.get("code")
        if not code:
            msg = "Provider reported success without an authorization code"
            raise MissingAuthorizationCode(msg, provider=provider, attempt_id=attempt_id)
        if outcome.params.get("state") != attempt.state:
            msg = "State parameter mismatch in authorization redirect"
            raise MissingAuthorizationCode(msg, provider=provider, attempt_id=attempt_id)

        logger.debug("Login attempt %s: exchanging authorization code", attempt_id)
        tokens = await self.provider.exchange_code(code, attempt)

        logger.debug("Login attempt %s: fetching user profile", attempt_id)
        profile = await self.provider.get_userinfo(tokens.access_token)

        record = TokenRecord(access_token=tokens.access_token, profile=freeze_profile(profile))
        session = await asyncio.shield(self._commit(generation, record))
        if session is None:
            msg = "Login attempt was superseded"
            raise AttemptSuperseded(msg, provider=provider, attempt_id=attempt_id)
        logger.info("Login attempt %s completed", attempt_id)
        return session

    async def _commit(self, generation: int, record: TokenRecord) -> Session | None:
        """Persist ``record`` and publish it if ``generation`` is still current.

        Runs shielded so that a cancellation never interrupts a write
        halfway. When the attempt is superseded during the write, the
        slots are put back as they were before it.

        Returns
        -------
        Session or None
            The published session, or None if the attempt was superseded.
        """
        async with self._store_lock:
            if generation != self._generation:
                return None
            previous = await self.record_store.read_slots()
            await self.record_store.save(record)
            if generation != self._generation:
                try:
                    await self.record_store.restore_slots(previous)
                except StorageFailure:
                    logger.exception("Could not restore the record replaced by a superseded login")
                return None
            self._restore_point = None
            session = Session(
                status=SessionStatus.AUTHENTICATED,
                user=record.profile,
                access_token=record.access_token,
            )
            self._committed = (generation, session)
            self._publish(session)
            return session

    def _committed_session(self, generation: int) -> Session | None:
        """Session published by the commit of ``generation``, if it got that far."""
        if self._committed is not None and self._committed[0] == generation:
            return self._committed[1]
        return None

    def _fail(self, exc: AuthenticationError) -> None:
        self._restore_point = None
        self._publish(
            self._session.evolve(
                status=SessionStatus.AUTH_ERROR,
                error=exc.message or exc.kind,
                error_kind=exc.kind,
            )
        )

    def _fail_cancelled(self) -> None:
        """Return to the session as it was before the attempt began."""
        previous = self._restore_point or Session()
        self._restore_point = None
        if previous.status in (SessionStatus.AUTH_ERROR, SessionStatus.AUTHENTICATING):
            previous = previous.evolve(
                status=SessionStatus.UNAUTHENTICATED, error=None, error_kind=None
            )
        self._publish(previous.evolve(is_loading=False))

    def _superseded_result(self) -> LoginResult:
        return LoginResult(
            False,
            self._session,
            "Login attempt was superseded",
            AttemptSuperseded.__name__,
        )

    @staticmethod
    def _log_failure(exc: AuthenticationError) -> None:
        if isinstance(exc, NetworkUnreachable):
            logger.warning("Login failed, provider unreachable: %s", exc)
        elif isinstance(exc, TokenExchangeRejected):
            logger.warning("Login failed, token exchange rejected (HTTP %s): %s", exc.status_code, exc)
        elif isinstance(exc, StorageFailure):
            logger.error("Login failed, could not persist the session: %s", exc, exc_info=exc)
        else:
            logger.warning("Login failed: %s", exc)

    # ── Logout ──────────────────────────────────────────────────────

    async def logout(self) -> None:
        """Erase the persisted record and sign out.

        Supersedes any login in flight. The session is signed out even
        when erasure fails.

        Raises
        ------
        StorageFailure
            If the persisted record could not be erased.
        """
        self._supersede()
        self._restore_point = None
        token = self._session.access_token

        failure: StorageFailure | None = None
        try:
            async with self._store_lock:
                await self.record_store.erase()
        except StorageFailure as exc:
            logger.exception("Could not erase the persisted session")
            failure = exc

        self._publish(Session(status=SessionStatus.UNAUTHENTICATED))
        logger.info("Logged out")

        if token and self.revoke_on_logout:
            await self.provider.revoke_token(token)

        if failure is not None:
            raise failure


def create_session_manager(
    settings: AuthSettings,
    prompt: AuthorizationPrompt | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> SessionManager:
    """Wire a SessionManager from AuthSettings.

    Parameters
    ----------
    settings : AuthSettings
        Provider, redirect and storage configuration.
    prompt : AuthorizationPrompt, optional
        Authorization prompt. Defaults to the system browser with a
        loopback callback server.
    http_client : httpx.AsyncClient, optional
        Client shared with the provider gateway.

    Returns
    -------
    SessionManager
        An engine whose session is still loading.

    Raises
    ------
    ConfigurationError
        If the client id or a required endpoint is missing.
    """
    from .prompt import SystemBrowserPrompt
    from .provider import create_provider_from_settings
    from .token_store import TokenRecordStore, get_token_store

    provider = create_provider_from_settings(settings, http_client=http_client)
    store = get_token_store(
        settings.token_store_backend,
        path=settings.storage_path,
        service_name=settings.keyring_service,
    )
    return SessionManager(
        provider=provider,
        record_store=TokenRecordStore(store, settings.token_key, settings.profile_key),
        prompt=prompt or SystemBrowserPrompt.from_settings(settings),
        revoke_on_logout=settings.revoke_on_logout,
    )
