from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from routers.rooms import rooms_router
from connections import ConnectionHub
from directory import Directory
from errors import DirectoryInconsistencyError
from relay import RelaySession
from schemas import signaling
from constants import CORS_ORIGINS
from logging_config import get_logger
import uuid

logger = get_logger(__name__)


def create_app(directory: Directory = None, hub: ConnectionHub = None) -> FastAPI:
    """Build the relay application.

    The Directory and ConnectionHub are process-wide and shared by the HTTP
    room endpoints and every WebSocket session; tests pass their own.
    """
    app = FastAPI(title="p2p-signaling-relay")
    app.state.directory = directory if directory is not None else Directory()
    app.state.hub = hub if hub is not None else ConnectionHub()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(rooms_router)

    @app.get("/", response_class=PlainTextResponse)
    async def index():
        return "Signaling relay is running"

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """One relay session per connection.

        Frames are handled strictly one at a time; disconnect cleanup runs
        exactly once whatever ends the loop.
        """
        await websocket.accept()
        participant_id = uuid.uuid4().hex
        hub: ConnectionHub = websocket.app.state.hub
        session = RelaySession(participant_id, websocket.app.state.directory, hub)
        hub.register(participant_id, websocket)
        logger.info(f"Connection accepted: {participant_id}")

        try:
            await hub.send(participant_id, signaling.connected(participant_id))
            message_count = 0
            while True:
                data = await websocket.receive_text()
                message_count += 1
                logger.debug(f"Received frame #{message_count} from {participant_id}")
                await session.handle_raw(data)
        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected normally for connection {participant_id}")
        except DirectoryInconsistencyError:
            logger.critical(f"Directory inconsistency while serving {participant_id}", exc_info=True)
            raise
        except Exception as e:
            logger.error(f"WebSocket error for connection {participant_id}: {e}", exc_info=True)
            try:
                await websocket.close()
            except Exception as close_error:
                logger.debug(f"Error closing WebSocket: {close_error}")
        finally:
            await session.disconnect()

    logger.info("FastAPI application initialized")
    return app


app = create_app()
