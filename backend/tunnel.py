import atexit
import io
import threading
from typing import Optional

import paramiko
from sshtunnel import SSHTunnelForwarder

from config import settings

_forwarder: Optional[SSHTunnelForwarder] = None
_lock = threading.Lock()
_cleanup_attached = False


def _private_key():
    # Keys passed through the environment usually carry literal "\n" sequences
    text = settings.SSH_PRIVATE_KEY.replace("\\n", "\n")
    for key_cls in (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey):
        try:
            return key_cls.from_private_key(io.StringIO(text))
        except paramiko.SSHException:
            continue
    raise RuntimeError("SSH_PRIVATE_KEY could not be parsed as an Ed25519, ECDSA or RSA key")


def _build_forwarder() -> SSHTunnelForwarder:
    auth = {}
    if settings.SSH_PRIVATE_KEY:
        auth["ssh_pkey"] = _private_key()
    elif settings.SSH_PASSWORD:
        auth["ssh_password"] = settings.SSH_PASSWORD
    else:
        raise RuntimeError("Provide SSH_PASSWORD or SSH_PRIVATE_KEY")

    return SSHTunnelForwarder(
        (settings.SSH_HOST, settings.SSH_PORT),
        ssh_username=settings.SSH_USERNAME,
        remote_bind_address=(settings.DB_HOST or "127.0.0.1", settings.DB_PORT),
        local_bind_address=("127.0.0.1", 0),
        set_keepalive=30.0,
        **auth,
    )


def ensure_ssh_tunnel() -> int:
    """Start the tunnel on first use and return its local port. Later calls reuse it."""
    global _forwarder, _cleanup_attached
    with _lock:
        if _forwarder is not None and _forwarder.is_active:
            return _forwarder.local_bind_port

        print(f"Opening SSH tunnel to {settings.SSH_HOST}:{settings.SSH_PORT}...")
        forwarder = _build_forwarder()
        forwarder.start()
        _forwarder = forwarder
        print(f"SSH tunnel ready on 127.0.0.1:{forwarder.local_bind_port}")

        if not _cleanup_attached:
            atexit.register(close_ssh_tunnel)
            _cleanup_attached = True
        return forwarder.local_bind_port


def close_ssh_tunnel() -> None:
    global _forwarder
    with _lock:
        if _forwarder is None:
            return
        try:
            _forwarder.stop()
            print("SSH tunnel closed.")
        except Exception as e:
            print(f"Error closing SSH tunnel: {e}")
        finally:
            _forwarder = None
