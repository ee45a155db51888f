from fastapi import APIRouter, HTTPException, Request
from schemas.rooms import CreateRoomResponse, JoinRoomRequest, JoinRoomResponse, ParticipantsResponse, RoomDetailsResponse
from directory import Directory
from errors import SignalingError
from constants import ROOM_ID_LENGTH
import random
import string
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])

def generate_random_slug(length: int = ROOM_ID_LENGTH) -> str:
    return ''.join(random.choices(string.ascii_lowercase + string.digits, k=length))

def _directory(request: Request) -> Directory:
    return request.app.state.directory


@rooms_router.post("/create", response_model=CreateRoomResponse, response_model_by_alias=True)
async def create_room(request: Request):
    # Response 200: { "roomId": "k3j9x0a" }
    client_host = request.client.host if request.client else 'unknown'
    logger.info(f"Room creation request from {client_host}")
    directory = _directory(request)
    room_id = generate_random_slug()
    while directory.room_exists(room_id):
        logger.debug(f"Room id {room_id} already taken, drawing another")
        room_id = generate_random_slug()
    directory.create_room(room_id)
    logger.info(f"Room {room_id} created successfully")
    return CreateRoomResponse(room_id=room_id)


@rooms_router.post("/join", response_model=JoinRoomResponse, response_model_by_alias=True)
async def join_room(join_room_request: JoinRoomRequest, request: Request):
    # POST /rooms/join Body: { "roomId": "k3j9x0a", "participantId": "..." }
    # Response 200: { "roomId": "k3j9x0a", "participants": ["..."] }
    room_id = join_room_request.room_id
    participant_id = join_room_request.participant_id
    logger.info(f"Join room request for {room_id} by {participant_id}")

    if not room_id:
        logger.warning("Join room failed: roomId is empty")
        raise HTTPException(status_code=400, detail="roomId must not be empty")

    directory = _directory(request)
    try:
        directory.add_participant(room_id, participant_id)
    except SignalingError as e:
        logger.error(f"Join room failed for {room_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to join room")

    participants = directory.participants_of(room_id)
    logger.info(f"Join room successful for {room_id}: {len(participants)} participants")
    return JoinRoomResponse(room_id=room_id, participants=participants)


@rooms_router.get("/{room_id}/participants", response_model=ParticipantsResponse)
async def get_room_participants(room_id: str, request: Request):
    participants = _directory(request).participants_of(room_id)
    logger.debug(f"Room {room_id} has {len(participants)} participants")
    return ParticipantsResponse(participants=participants)


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse, response_model_by_alias=True)
async def get_room_details(room_id: str, request: Request):
    """
    Get the room's lifecycle state and members.

    Returns:
    - roomId: the requested room id
    - state: "active" with at least one member, "empty" otherwise (including unknown rooms)
    - participants: current member ids
    """
    directory = _directory(request)
    state = directory.lifecycle(room_id)
    participants = directory.participants_of(room_id)
    logger.info(f"Room details retrieved for {room_id}: {state.value}, {len(participants)} participants")
    return RoomDetailsResponse(room_id=room_id, state=state.value, participants=participants)
