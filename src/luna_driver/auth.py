"""
Luna Challenge/Response Authentication

Luna sends nothing on connect. When the server has a password configured it
sends a challenge once the client starts reading:

    Server: +<challenge>\\r\\n
    Client: $<N>\\r\\n<bcrypt hash of password>\\r\\n
    Server: +<ok>\\r\\n  or  -<error>\\r\\n

The handshake only runs when the connector was given a password; without one
the client never reads, since an unprotected server would never answer.
"""

import socket
from typing import BinaryIO, Optional

import bcrypt
import structlog

from .errors import AuthenticationError, BadConnectionError, ProtocolError
from .protocol import ErrorFrame, OkFrame, encode_bulk_string, read_response

logger = structlog.get_logger()


def hash_password(password: str) -> bytes:
    """bcrypt hash with a fresh salt on every call"""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())


def _read_auth_frame(reader: BinaryIO, stage: str):
    try:
        return read_response(reader)
    except (BadConnectionError, ProtocolError, OSError) as e:
        raise AuthenticationError(f"failed to read {stage}: {e}") from e


def authenticate(sock: socket.socket, reader: BinaryIO, password: Optional[str]):
    """
    Run the challenge/response handshake.

    Args:
        sock: Connected socket used for the reply
        reader: Buffered reader over the same socket
        password: Plaintext password; empty or None skips the handshake

    Raises:
        AuthenticationError: On any handshake failure
    """
    if not password:
        return

    challenge = _read_auth_frame(reader, "auth challenge")
    if isinstance(challenge, ErrorFrame):
        raise AuthenticationError(f"auth error: {challenge.message}")
    if not isinstance(challenge, OkFrame):
        raise AuthenticationError(f"unexpected auth challenge: {type(challenge).__name__}")

    logger.debug("auth challenge received", challenge_length=len(challenge.message))

    try:
        hashed = hash_password(password)
    except ValueError as e:
        # bcrypt >= 5 rejects passwords longer than 72 bytes
        raise AuthenticationError(f"cannot hash password: {e}") from e

    try:
        sock.sendall(encode_bulk_string(hashed))
    except OSError as e:
        raise AuthenticationError(f"failed to send auth response: {e}") from e

    result = _read_auth_frame(reader, "auth result")
    if isinstance(result, OkFrame):
        logger.info("authenticated")
        return
    if isinstance(result, ErrorFrame):
        raise AuthenticationError(result.message)
    raise AuthenticationError(f"unexpected auth response: {type(result).__name__}")


__all__ = ['authenticate', 'hash_password']
