from contextlib import contextmanager
from typing import Iterator, Optional, Union

from .config import ConnectionProfile
from .deadline import Deadline
from .http_client import HttpSession
from .native_client import NativeSession


Session = Union[NativeSession, HttpSession]


def create_session(profile: ConnectionProfile, deadline: Optional[Deadline] = None) -> Session:
    """
    Native protocol unless the profile asks for http.
    """
    if profile.is_http:
        return HttpSession(profile, deadline)
    return NativeSession(profile, deadline)


@contextmanager
def open_session(
    profile: ConnectionProfile, deadline: Optional[Deadline] = None
) -> Iterator[Session]:
    """
    Open a transient session for one operation and close it on every exit path.
    Sessions are never shared or pooled.
    """
    session = create_session(profile, deadline)
    session.connect()
    try:
        yield session
    finally:
        session.close()
