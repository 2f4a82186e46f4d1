"""Keycloak directory service: credential checks, token validation, user admin."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """The directory service rejected a request."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


@dataclass
class Identity:
    """An authenticated user account."""
    id: str
    email: Optional[str] = None
    full_name: str = ""
    avatar_url: str = ""

    def metadata(self) -> Dict[str, str]:
        return {"full_name": self.full_name, "avatar_url": self.avatar_url}


@dataclass
class Session:
    """Bearer credential issued by a successful login."""
    access_token: str
    expires_in: int
    refresh_token: Optional[str] = None


class KeycloakConfig:
    """Keycloak configuration."""

    def __init__(
        self,
        server_url: str,
        realm: str,
        client_id: str,
        client_secret: str = "",
    ):
        self.server_url = server_url.rstrip('/')
        self.realm = realm
        self.client_id = client_id
        self.client_secret = client_secret
        self.issuer = f"{self.server_url}/realms/{realm}"
        self.jwks_uri = f"{self.issuer}/protocol/openid-connect/certs"
        self.token_url = f"{self.issuer}/protocol/openid-connect/token"
        self.users_url = f"{self.server_url}/admin/realms/{realm}/users"


def identity_from_claims(payload: Dict[str, Any]) -> Identity:
    """Build an Identity from decoded access token claims."""
    return Identity(
        id=payload.get("sub"),
        email=payload.get("email"),
        full_name=payload.get("full_name") or payload.get("name") or "",
        avatar_url=payload.get("avatar_url") or payload.get("picture") or "",
    )


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return fallback
    if not isinstance(body, dict):
        return fallback
    return body.get("errorMessage") or body.get("error_description") or body.get("error") or fallback


def _attributes(metadata: Dict[str, Optional[str]]) -> Dict[str, list]:
    return {key: [value or ""] for key, value in metadata.items()}


class KeycloakDirectory:
    """
    Client for a Keycloak realm acting as the directory service.

    Password logins use the realm's confidential client; user creation and
    attribute updates go through the admin REST API with that client's
    service account.
    """

    def __init__(
        self,
        config: KeycloakConfig,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.timeout = timeout
        self._transport = transport
        logger.info(f"Keycloak configured: {config.issuer}")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def get_jwks(self) -> dict:
        """
        Fetch JSON Web Key Set from Keycloak.

        Returns:
            dict: JWKS data
        """
        async with self._client() as client:
            response = await client.get(self.config.jwks_uri)
            response.raise_for_status()
            return response.json()

    async def validate_token(self, token: str) -> Identity:
        """
        Verify a JWT access token issued by the realm.

        Args:
            token: Bearer token as issued at login

        Returns:
            Identity: The user the token belongs to

        Raises:
            AuthError: If token is invalid, expired or from another realm
        """
        try:
            unverified_header = jwt.get_unverified_header(token)

            jwks = await self.get_jwks()

            # Find the correct key
            rsa_key = None
            for key in jwks.get("keys", []):
                if key.get("kid") == unverified_header.get("kid"):
                    rsa_key = key
                    break

            if not rsa_key:
                raise AuthError("Unable to find appropriate key")

            # The issuer host may differ between the public and the internal
            # Keycloak URL, so only the realm part of iss is compared
            payload = jwt.decode(
                token,
                rsa_key,
                algorithms=["RS256"],
                options={"verify_aud": False, "verify_iss": False}
            )

            if "iss" in payload:
                token_realm = payload["iss"].split("/realms/")[-1] if "/realms/" in payload["iss"] else None
                if token_realm != self.config.realm:
                    raise AuthError(f"Invalid realm: expected {self.config.realm}, got {token_realm}")

            if not payload.get("sub"):
                raise AuthError("Token does not contain a subject")

            return identity_from_claims(payload)

        except ExpiredSignatureError:
            raise AuthError("Token has expired")
        except JWTError as e:
            logger.error(f"JWT verification failed: {e}")
            raise AuthError("Invalid authentication credentials")
        except httpx.HTTPError as e:
            logger.error(f"Could not fetch JWKS: {e}")
            raise AuthError("Unable to verify token")

    async def verify_credentials(self, email: str, password: str) -> Session:
        """
        Exchange an email and password for a session.

        Raises:
            AuthError: If Keycloak rejects the credentials
        """
        data = {
            "grant_type": "password",
            "client_id": self.config.client_id,
            "username": email,
            "password": password,
            "scope": "openid email profile",
        }
        if self.config.client_secret:
            data["client_secret"] = self.config.client_secret

        try:
            async with self._client() as client:
                response = await client.post(self.config.token_url, data=data)
        except httpx.HTTPError as e:
            logger.error(f"Token request failed: {e}")
            raise AuthError("Authentication service unavailable")

        if response.status_code == 401:
            raise AuthError("Invalid login credentials")
        if response.status_code != 200:
            raise AuthError(_error_message(response, "Login failed"))

        body = response.json()
        return Session(
            access_token=body["access_token"],
            expires_in=int(body.get("expires_in", 0)),
            refresh_token=body.get("refresh_token"),
        )

    async def _admin_token(self, client: httpx.AsyncClient) -> str:
        response = await client.post(
            self.config.token_url,
            data={
                "grant_type": "client_credentials",
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
            },
        )
        if response.status_code != 200:
            logger.error(f"Service account login failed: {response.status_code} {response.text}")
            raise AuthError(_error_message(response, "Service account login failed"))
        return response.json()["access_token"]

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: Optional[Dict[str, Optional[str]]] = None,
    ) -> Identity:
        """
        Create a user with a permanent password.

        Args:
            email: Used as both username and email
            password: Initial password
            metadata: Profile attributes (full_name, avatar_url)

        Returns:
            Identity: The created user

        Raises:
            AuthError: If the user exists or Keycloak rejects the payload
        """
        metadata = metadata or {}
        representation = {
            "username": email,
            "email": email,
            "enabled": True,
            "emailVerified": False,
            "credentials": [{"type": "password", "value": password, "temporary": False}],
            "attributes": _attributes(metadata),
        }

        try:
            async with self._client() as client:
                token = await self._admin_token(client)
                response = await client.post(
                    self.config.users_url,
                    json=representation,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            logger.error(f"User creation request failed: {e}")
            raise AuthError("Authentication service unavailable")

        if response.status_code == 409:
            raise AuthError("User already registered")
        if response.status_code != 201:
            raise AuthError(_error_message(response, "Signup failed"))

        # Keycloak returns the new user's URL, ending in its id
        user_id = response.headers.get("Location", "").rstrip('/').split('/')[-1]
        logger.info(f"User created in Keycloak: id={user_id}")
        return Identity(
            id=user_id,
            email=email,
            full_name=metadata.get("full_name") or "",
            avatar_url=metadata.get("avatar_url") or "",
        )

    async def update_user_metadata(self, user_id: str, metadata: Dict[str, Optional[str]]) -> None:
        """
        Replace a user's profile attributes.

        Raises:
            AuthError: If Keycloak rejects the update
        """
        try:
            async with self._client() as client:
                token = await self._admin_token(client)
                response = await client.put(
                    f"{self.config.users_url}/{user_id}",
                    json={"attributes": _attributes(metadata)},
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            logger.error(f"User update request failed: {e}")
            raise AuthError("Authentication service unavailable")

        if response.status_code not in (200, 204):
            raise AuthError(_error_message(response, "User update failed"))
