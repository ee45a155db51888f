import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 3000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

# TLS is optional; both files must be set to serve over https/wss
SSL_CERTFILE = os.getenv("SSL_CERTFILE", None)
SSL_KEYFILE = os.getenv("SSL_KEYFILE", None)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

STUN_SERVERS = [
    s.strip()
    for s in os.getenv("STUN_SERVERS", "stun:stun.l.google.com:19302,stun:stun1.l.google.com:19302").split(",")
    if s.strip()
]

SIGNAL_URL = os.getenv("SIGNAL_URL", "ws://localhost:3000/ws")
# file or device url handed to aiortc MediaPlayer by the command-line client
MEDIA_SOURCE = os.getenv("MEDIA_SOURCE", None)

ROOM_ID_LENGTH = int(os.getenv("ROOM_ID_LENGTH", 7))