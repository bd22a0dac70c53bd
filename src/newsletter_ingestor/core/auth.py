"""Google OAuth token loading and API service construction for Gmail and Sheets."""

from __future__ import annotations

import logging
from pathlib import Path

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import Resource, build

from newsletter_ingestor.core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

# Read mail, write spreadsheet rows
SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/spreadsheets",
]


def _load_cached_token(token_path: Path) -> Credentials | None:
    if not token_path.exists():
        return None
    try:
        creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)
    except Exception as e:
        logger.warning("Ignoring unreadable token cache %s: %s", token_path, e)
        return None

    if creds.valid:
        return creds
    if creds.expired and creds.refresh_token:
        try:
            creds.refresh(Request())
        except Exception as e:
            logger.warning("Token refresh failed, falling back to consent flow: %s", e)
            return None
        token_path.write_text(creds.to_json())
        return creds
    return None


def authenticate(credentials_path: Path, token_path: Path) -> Credentials:
    """Return credentials for both APIs, running the consent flow only when needed.

    Raises:
        AuthenticationError: If no cached token is usable and the consent flow
            cannot run or fails.
    """
    creds = _load_cached_token(token_path)
    if creds is not None:
        return creds

    if not credentials_path.exists():
        raise AuthenticationError(
            f"No usable token at {token_path} and no client secret at {credentials_path}"
        )

    try:
        flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), SCOPES)
        creds = flow.run_local_server(port=0)
    except Exception as e:
        raise AuthenticationError(f"OAuth consent flow failed: {e}") from e

    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(creds.to_json())
    logger.info("Cached new OAuth token at %s", token_path)
    return creds


def build_services(creds: Credentials) -> tuple[Resource, Resource]:
    """Build the (Gmail v1, Sheets v4) service resources."""
    gmail = build("gmail", "v1", credentials=creds)
    sheets = build("sheets", "v4", credentials=creds)
    return gmail, sheets
