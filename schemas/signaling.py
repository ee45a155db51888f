from typing import Annotated, Any, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

# Frames on the wire are {"event": <kind>, "data": <payload>}.
# Session descriptions and ICE candidates are typed as Any: the relay
# forwards them untouched.


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Client -> relay

class JoinRoom(BaseModel):
    event: Literal["join-room"]
    data: str = Field(min_length=1)


class LeaveRoom(BaseModel):
    event: Literal["leave-room"]
    data: str = Field(min_length=1)


class OfferToPayload(_Payload):
    to: str = Field(min_length=1)
    offer: Any


class AnswerToPayload(_Payload):
    to: str = Field(min_length=1)
    answer: Any


class CandidateToPayload(_Payload):
    to: str = Field(min_length=1)
    candidate: Any


class OfferMessage(BaseModel):
    event: Literal["offer"]
    data: OfferToPayload


class AnswerMessage(BaseModel):
    event: Literal["answer"]
    data: AnswerToPayload


class IceCandidateMessage(BaseModel):
    event: Literal["ice-candidate"]
    data: CandidateToPayload


ClientMessage = Annotated[
    Union[JoinRoom, LeaveRoom, OfferMessage, AnswerMessage, IceCandidateMessage],
    Field(discriminator="event"),
]

client_message_adapter = TypeAdapter(ClientMessage)


def parse_client_message(raw: str):
    """Validate a raw text frame into one of the client message variants.

    Raises pydantic.ValidationError for malformed JSON or an unknown shape.
    """
    return client_message_adapter.validate_json(raw)


# Relay -> client

class ConnectedPayload(_Payload):
    participant_id: str = Field(alias="participantId")


class RoomInfoPayload(_Payload):
    room_id: str = Field(alias="roomId")
    participants: List[str]


class OfferFromPayload(_Payload):
    from_: str = Field(alias="from")
    offer: Any


class AnswerFromPayload(_Payload):
    from_: str = Field(alias="from")
    answer: Any


class CandidateFromPayload(_Payload):
    from_: str = Field(alias="from")
    candidate: Any


class ErrorPayload(_Payload):
    message: str


def _frame(event: str, data) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True)
    return {"event": event, "data": data}


def connected(participant_id: str) -> Dict[str, Any]:
    return _frame("connected", ConnectedPayload(participant_id=participant_id))


def user_joined(participant_id: str) -> Dict[str, Any]:
    return _frame("user-joined", participant_id)


def user_left(participant_id: str) -> Dict[str, Any]:
    return _frame("user-left", participant_id)


def room_info(room_id: str, participants: List[str]) -> Dict[str, Any]:
    return _frame("room-info", RoomInfoPayload(room_id=room_id, participants=participants))


def offer_from(sender: str, offer) -> Dict[str, Any]:
    return _frame("offer", OfferFromPayload(from_=sender, offer=offer))


def answer_from(sender: str, answer) -> Dict[str, Any]:
    return _frame("answer", AnswerFromPayload(from_=sender, answer=answer))


def ice_candidate_from(sender: str, candidate) -> Dict[str, Any]:
    return _frame("ice-candidate", CandidateFromPayload(from_=sender, candidate=candidate))


def error(message: str) -> Dict[str, Any]:
    return _frame("error", ErrorPayload(message=message))
