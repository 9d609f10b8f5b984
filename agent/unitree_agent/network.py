"""
Network utilities — connectivity check, interface IP lookup, signal sampling.

Connectivity: socket-level check against the API host (works on WiFi, LAN,
or any adapter).

IP lookup: the address of the interface the OS would route outbound traffic
through (UDP "connect", no packet is sent).

Sampling: IP and location are fetched on worker threads with a timeout so a
hung platform call can never stall the tick loop. A sample that times out or
fails is simply absent for that tick.
"""

import socket
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout

from .config import log
from .constants import SAMPLE_TIMEOUT_SEC
from .location import PermissionState
from .models import NetworkSignal, LocationReason


# ─── Connectivity check (network-interface agnostic) ─────────────

def is_online(server_url):
    """
    Quick connectivity check via socket connect to the server's host.
    Only tests whether a TCP connection to the server can be established.
    """
    try:
        host = server_url.replace("https://", "").replace("http://", "").split("/")[0].split(":")[0]
        port = 443 if "https://" in server_url else 80
        sock = socket.create_connection((host, port), timeout=4)
        sock.close()
        return True
    except OSError:
        return False


# ─── Interface IP ────────────────────────────────────────────────

def get_current_ip(probe_host="8.8.8.8"):
    """IPv4 address of the outbound interface, or None when offline."""
    sock = None
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.settimeout(2)
        sock.connect((probe_host, 80))
        ip = sock.getsockname()[0]
        if not ip or ip.startswith("0."):
            return None
        return ip
    except OSError as e:
        log.debug("IP lookup failed: %s", e)
        return None
    finally:
        if sock is not None:
            sock.close()


# ─── Sampling with timeouts ──────────────────────────────────────

class SignalSampler:
    """
    Produces (NetworkSignal | None, LocationSignal | None, LocationReason | None)
    for one tick. The reason is set only when location is absent.
    """

    def __init__(self, location_provider, ip_lookup=get_current_ip,
                 timeout=SAMPLE_TIMEOUT_SEC, clock=time.time):
        self._location = location_provider
        self._ip_lookup = ip_lookup
        self._timeout = timeout
        self._clock = clock
        self._pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="sampler")
        self._inflight = {}

    def _call(self, kind, fn, *args):
        """Run fn on the pool; (value, timed_out). Never raises."""
        previous = self._inflight.get(kind)
        if previous is not None and not previous.done():
            # Last call is still hung; don't pile up more workers behind it.
            return None, True
        future = self._pool.submit(fn, *args)
        self._inflight[kind] = future
        try:
            return future.result(timeout=self._timeout), False
        except FutureTimeout:
            log.warning("%s sample timed out after %ss", kind, self._timeout)
            return None, True
        except Exception as e:
            log.warning("%s sample failed: %s", kind, e)
            return None, False

    def sample(self):
        now = self._clock()

        ip, _ = self._call("ip", self._ip_lookup)
        signal = NetworkSignal(ip_address=ip, sampled_at=now) if ip else None

        permission = self._location.permission()
        if permission == PermissionState.DENIED:
            return signal, None, LocationReason.PERMISSION_DENIED
        if permission == PermissionState.UNDETERMINED:
            return signal, None, LocationReason.PERMISSION_UNDETERMINED

        location, timed_out = self._call("location", self._location.current_location, self._timeout)
        if location is None:
            return signal, None, LocationReason.TIMEOUT if timed_out else LocationReason.NO_FIX
        return signal, location, None

    def close(self):
        self._pool.shutdown(wait=False)
