"""
tokens.py — Authentication Tokens

A token is an opaque 20 character id bound to one user email and an expiry.
Logging in issues a token; every authenticated request verifies it and then
slides its expiry forward. Expired tokens are deleted the moment they are
seen.
"""

from . import config
from .datastore import DataStore
from .errors import InvalidRequest, NotFound, Unauthorized
from .ids import TOKEN_ID_LENGTH, IdAllocator
from .logging_config import get_logger
from .models import TokenRecord, UserRecord, now_ms
from .validators import is_valid_email, is_valid_password, is_valid_token_id, password_matches

log = get_logger(__name__)

TOKENS = "tokens"
USERS = "users"


class TokenService:
    """Issues, verifies, extends and revokes tokens stored in the `tokens` collection."""

    def __init__(self, store: DataStore, id_allocator: IdAllocator = None, ttl_seconds: int = None):
        self.store = store
        self.ids = id_allocator or IdAllocator(TOKEN_ID_LENGTH)
        self.ttl_ms = (ttl_seconds or config.TOKEN_TTL_SECONDS) * 1000

    async def issue(self, email: str, password: str) -> TokenRecord:
        """
        Logs a user in.

        Raises:
            InvalidRequest: Missing fields or wrong password.
            NotFound: No user with this email.
        """
        if not is_valid_email(email) or not is_valid_password(password):
            raise InvalidRequest("Missing required field(s).")
        email = email.strip()
        user = await self.store.get_record(USERS, email, UserRecord)
        if not password_matches(password, user.password):
            raise InvalidRequest("Password did not match the specified user password")

        token = TokenRecord(id=self.ids.allocate(), email=email, expiration=now_ms() + self.ttl_ms)
        await self.store.create_record(TOKENS, token.id, token)
        log.info(f"[User: {email}] Logged in.")
        return token

    async def get(self, token_id: str) -> TokenRecord:
        if not is_valid_token_id(token_id):
            raise InvalidRequest("Missing required field, or field invalid")
        return await self.store.get_record(TOKENS, token_id.strip(), TokenRecord)

    async def revoke(self, token_id: str) -> None:
        if not is_valid_token_id(token_id):
            raise InvalidRequest("Missing required field")
        token_id = token_id.strip()
        async with self.store.lock(TOKENS, token_id):
            try:
                await self.store.remove(TOKENS, token_id)
            except NotFound:
                raise InvalidRequest("Could not find the specified token.")

    async def extend(self, token_id: str) -> TokenRecord:
        """
        Pushes the expiry TOKEN_TTL_SECONDS into the future.

        An already expired token is not revived: it is deleted and the
        extension fails with InvalidRequest.
        """
        token_id = token_id.strip() if isinstance(token_id, str) else token_id
        async with self.store.lock(TOKENS, token_id):
            token = await self.get(token_id)
            if token.is_expired():
                await self.store.remove(TOKENS, token.id)
                raise InvalidRequest("The token cannot be extended (it is expired and deleted).")
            token.expiration = now_ms() + self.ttl_ms
            await self.store.put_record(TOKENS, token.id, token)
        return token

    async def verify(self, token_id: str, email: str) -> TokenRecord:
        """
        Checks that `token_id` is a live token of `email`.

        Raises:
            Unauthorized: Malformed, unknown, foreign or expired token. An
                expired token is removed before raising.
        """
        if not is_valid_token_id(token_id) or not is_valid_email(email):
            raise Unauthorized()
        try:
            token = await self.store.get_record(TOKENS, token_id.strip(), TokenRecord)
        except NotFound:
            raise Unauthorized()

        if token.is_expired():
            log.info(f"[User: {token.email}] Token expired, deleting it.")
            try:
                await self.store.remove(TOKENS, token.id)
            except NotFound:
                pass
            raise Unauthorized("Token is expired.")
        if token.email != email.strip():
            log.warning(f"[User: {email.strip()}] Presented a token belonging to another user.")
            raise Unauthorized()
        return token
