"""HTTP API for meeting tokens.

Endpoints:
- POST /api/meet/create → 200 {"meetId": "<32 hex chars>"}
- GET /api/meet/check/{meetId} → 200 {"exists": true} | 404 {"exists": false}

A check refreshes the meeting's last-access time.
"""

import logging

from aiohttp import web

from src.signaling.meetings import MeetingStore, MeetingStoreError

logger = logging.getLogger(__name__)


class MeetingHandler:
    """Request handlers backed by a ``MeetingStore``."""

    def __init__(self, store: MeetingStore) -> None:
        self.store = store

    async def create_meeting(self, request: web.Request) -> web.Response:
        """Create a meeting token.

        Returns:
            200 OK: {"meetId": str}
            500 Internal Server Error: record store unavailable
        """
        try:
            meet_id = await self.store.create()
        except MeetingStoreError as e:
            logger.error("Error creating meeting", extra={"error": str(e)})
            return web.json_response({"error": "Failed to create meeting"}, status=500)

        return web.json_response({"meetId": meet_id})

    async def check_meeting(self, request: web.Request) -> web.Response:
        """Check that a meeting token exists.

        Returns:
            200 OK: {"exists": true}
            404 Not Found: {"exists": false}
            500 Internal Server Error: record store unavailable
        """
        meet_id = request.match_info["meetId"]
        try:
            exists = await self.store.touch(meet_id)
        except MeetingStoreError as e:
            logger.error(
                "Error checking meeting",
                extra={"meet_id": meet_id, "error": str(e)},
            )
            return web.json_response({"error": "Failed to check meeting"}, status=500)

        if not exists:
            logger.debug("Unknown meeting checked", extra={"meet_id": meet_id})
            return web.json_response({"exists": False}, status=404)

        return web.json_response({"exists": True})


def setup_meeting_routes(app: web.Application, store: MeetingStore) -> None:
    """Set up meeting API routes on application.

    Args:
        app: aiohttp Application instance
        store: Meeting record store
    """
    handler = MeetingHandler(store)

    app.router.add_post("/api/meet/create", handler.create_meeting)
    app.router.add_get("/api/meet/check/{meetId}", handler.check_meeting)

    logger.info("Meeting API endpoints configured: /api/meet/create, /api/meet/check/{meetId}")
