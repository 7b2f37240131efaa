"""
Push notifications through Firebase Cloud Messaging.

Recipients are addressed by user id; device tokens live in ``push_tokens``.
Callers treat every failure here as non-fatal.
"""

import asyncio
from typing import Protocol

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from cleanmatch.config import settings
from cleanmatch.db.helpers import execute_query, fetch_all
from cleanmatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

FIREBASE_APP_NAME = "cleanmatch-push"


class PushDeliveryError(Exception):
    def __init__(self, message: str, recipient_id: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.recipient_id = recipient_id
        self.status_code = status_code


class PushNotifier(Protocol):
    async def send(
        self, recipient_id: str, title: str, body: str, data: dict[str, str] | None = None
    ) -> int: ...


class PushTokenRepository:
    @staticmethod
    async def tokens_for(user_id: str) -> list[str]:
        rows = await fetch_all("SELECT token FROM push_tokens WHERE user_id = %s", (user_id,))
        return [row["token"] for row in rows]

    @staticmethod
    async def remove(user_id: str, token: str) -> None:
        await execute_query(
            "DELETE FROM push_tokens WHERE user_id = %s AND token = %s", (user_id, token)
        )


class FcmPushNotifier:
    """
    Sends one FCM message per registered device token.

    The Firebase app is created on first use from a service-account file, or
    from application default credentials when no file is configured. The SDK
    refreshes its OAuth access token itself.
    """

    def __init__(
        self,
        project_id: str | None = None,
        credentials_path: str | None = None,
        token_repository: PushTokenRepository | None = None,
        app: firebase_admin.App | None = None,
    ):
        self.project_id = project_id if project_id is not None else settings.FCM_PROJECT_ID
        self.credentials_path = (
            credentials_path
            if credentials_path is not None
            else settings.FIREBASE_CREDENTIALS_PATH
        )
        self.tokens = token_repository or PushTokenRepository()
        self._app = app

    def _firebase_app(self) -> firebase_admin.App:
        if self._app is not None:
            return self._app
        try:
            self._app = firebase_admin.get_app(FIREBASE_APP_NAME)
        except ValueError:
            cred = (
                credentials.Certificate(self.credentials_path)
                if self.credentials_path
                else credentials.ApplicationDefault()
            )
            self._app = firebase_admin.initialize_app(
                cred, {"projectId": self.project_id}, name=FIREBASE_APP_NAME
            )
            logger.info("Firebase app initialized", project_id=self.project_id)
        return self._app

    @staticmethod
    def _message(token: str, title: str, body: str, data: dict[str, str]) -> messaging.Message:
        return messaging.Message(
            token=token,
            notification=messaging.Notification(title=title, body=body),
            data={key: str(value) for key, value in data.items()},
            android=messaging.AndroidConfig(priority="high"),
            apns=messaging.APNSConfig(
                payload=messaging.APNSPayload(aps=messaging.Aps(sound="default", badge=1))
            ),
        )

    async def send(
        self, recipient_id: str, title: str, body: str, data: dict[str, str] | None = None
    ) -> int:
        """
        Deliver a notification to every device of ``recipient_id``.

        Returns the number of devices reached. A recipient without tokens is
        a no-op. Unregistered tokens are pruned.

        Raises:
            PushDeliveryError: when FCM rejects a message for another reason
        """
        if not self.project_id:
            logger.warning("FCM not configured, skipping push", recipient_id=recipient_id)
            return 0

        tokens = await self.tokens.tokens_for(recipient_id)
        if not tokens:
            logger.info("No push tokens for recipient", recipient_id=recipient_id)
            return 0

        messages = [self._message(token, title, body, data or {}) for token in tokens]
        try:
            # The SDK is blocking
            batch = await asyncio.to_thread(
                messaging.send_each, messages, app=self._firebase_app()
            )
        except (exceptions.FirebaseError, ValueError) as e:
            raise PushDeliveryError(f"FCM request failed: {e}", recipient_id) from e

        delivered = 0
        errors = []
        for token, response in zip(tokens, batch.responses, strict=True):
            if response.success:
                delivered += 1
            elif isinstance(response.exception, messaging.UnregisteredError):
                logger.info("Removing unregistered push token", recipient_id=recipient_id)
                await self.tokens.remove(recipient_id, token)
            else:
                errors.append(response.exception)

        if errors:
            http_response = getattr(errors[0], "http_response", None)
            raise PushDeliveryError(
                f"FCM error: {errors[0]}",
                recipient_id=recipient_id,
                status_code=getattr(http_response, "status_code", None),
            )

        logger.info("Push notification sent", recipient_id=recipient_id, devices=delivered)
        return delivered


push_notifier = FcmPushNotifier()
