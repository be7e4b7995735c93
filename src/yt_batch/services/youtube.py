"""YouTube Data API client acting for a signed-in user."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Protocol

import structlog
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload

from yt_batch.core.config import GoogleConfig
from yt_batch.core.exceptions import CredentialError, UploadError
from yt_batch.models.session import OAuthTokens, Session
from yt_batch.services.session_store import SessionStore

logger = structlog.get_logger()

UPLOAD_CHUNK_SIZE = 8 * 1024 * 1024
RE_AUTH_HINT = (
    "No refresh token is set. Please re-authenticate by logging out and logging back in. "
    "This will ensure a refresh token is provided for background uploads."
)


class VideoUploader(Protocol):
    """What the worker needs from the upload API."""

    def insert_video(self, path: Path, body: dict) -> Optional[str]:
        ...

    def set_thumbnail(self, video_id: str, path: Path) -> None:
        ...

    def update_privacy(self, video_id: str, privacy: str, publish_at: Optional[str]) -> None:
        ...


class CredentialProvider(Protocol):
    def uploader_for(self, session: Session) -> VideoUploader:
        ...


def _error_message(error: HttpError) -> str:
    reason = getattr(error, "reason", None) or str(error)
    return f"{reason} (HTTP {error.resp.status})" if error.resp is not None else reason


class YouTubeUploader:
    """Thin wrapper over the ``youtube/v3`` discovery client."""

    def __init__(
        self,
        credentials: Credentials,
        on_tokens: Optional[Callable[[Credentials], None]] = None,
    ):
        self._credentials = credentials
        self._on_tokens = on_tokens
        self._last_token = credentials.token
        self._service = build("youtube", "v3", credentials=credentials, cache_discovery=False)

    def _check_rotation(self) -> None:
        """Persist tokens if the client refreshed them during the last call."""
        if self._credentials.token != self._last_token:
            self._last_token = self._credentials.token
            if self._on_tokens:
                self._on_tokens(self._credentials)

    def insert_video(self, path: Path, body: dict) -> Optional[str]:
        media = MediaFileUpload(str(path), chunksize=UPLOAD_CHUNK_SIZE, resumable=True)
        request = self._service.videos().insert(
            part="snippet,status",
            body=body,
            media_body=media,
        )

        try:
            response = None
            while response is None:
                status, response = request.next_chunk()
                if status:
                    logger.debug("upload_chunk", file=path.name, progress=int(status.progress() * 100))
        except HttpError as e:
            raise UploadError(_error_message(e)) from e
        finally:
            self._check_rotation()

        return response.get("id")

    def set_thumbnail(self, video_id: str, path: Path) -> None:
        try:
            self._service.thumbnails().set(
                videoId=video_id,
                media_body=MediaFileUpload(str(path)),
            ).execute()
        except HttpError as e:
            raise UploadError(_error_message(e)) from e
        finally:
            self._check_rotation()

    def update_privacy(self, video_id: str, privacy: str, publish_at: Optional[str]) -> None:
        status = {"privacyStatus": privacy}
        if publish_at:
            status["publishAt"] = publish_at

        try:
            self._service.videos().update(
                part="status",
                body={"id": video_id, "status": status},
            ).execute()
        except HttpError as e:
            raise UploadError(_error_message(e)) from e
        finally:
            self._check_rotation()


def _expiry_from_millis(expiry_date: Optional[int]) -> Optional[datetime]:
    if not expiry_date:
        return None
    # google-auth compares expiry as naive UTC
    return datetime.fromtimestamp(expiry_date / 1000, tz=timezone.utc).replace(tzinfo=None)


def _millis_from_expiry(expiry: Optional[datetime]) -> Optional[int]:
    if expiry is None:
        return None
    return int(expiry.replace(tzinfo=timezone.utc).timestamp() * 1000)


class GoogleCredentialProvider:
    """Builds an authenticated uploader from a stored session.

    Refreshed (and rotated) tokens are written back to the session table so
    the web process and later worker passes see them.
    """

    def __init__(self, config: GoogleConfig, sessions: SessionStore):
        self.config = config.with_credentials_file()
        self.sessions = sessions

    def _persist_tokens(self, session: Session, credentials: Credentials) -> None:
        tokens = session.tokens or OAuthTokens()
        tokens.access_token = credentials.token
        if credentials.refresh_token:
            tokens.refresh_token = credentials.refresh_token
        tokens.expiry_date = _millis_from_expiry(credentials.expiry)
        session.tokens = tokens
        self.sessions.save(session)
        logger.info("session_tokens_refreshed", session_id=session.session_id[:10])

    def uploader_for(self, session: Session) -> YouTubeUploader:
        if not self.config.is_configured:
            raise CredentialError(
                "Google OAuth client is not configured. Set YTB_GOOGLE__CLIENT_ID, "
                "YTB_GOOGLE__CLIENT_SECRET and YTB_GOOGLE__REDIRECT_URI or provide a credentials file."
            )

        tokens = session.tokens
        if not session.is_usable or tokens is None:
            raise CredentialError("Session is not authenticated or missing tokens")
        if not tokens.refresh_token:
            raise CredentialError(RE_AUTH_HINT)

        credentials = Credentials(
            token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_uri=self.config.token_uri,
            client_id=self.config.client_id,
            client_secret=self.config.client_secret,
            scopes=self.config.scopes,
            expiry=_expiry_from_millis(tokens.expiry_date),
        )

        if not credentials.valid:
            try:
                credentials.refresh(Request())
            except RefreshError as e:
                raise CredentialError(f"Could not refresh access token: {e}") from e
            self._persist_tokens(session, credentials)

        return YouTubeUploader(
            credentials,
            on_tokens=lambda refreshed: self._persist_tokens(session, refreshed),
        )
