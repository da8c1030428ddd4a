"""Channels between the primary device and a secondary.

A transport offers a best-effort request/reply send that only works while
the peer is reachable, a durable transfer that is delivered once it is, an
out-of-band context slot that keeps only the latest value, and a
reachability signal. Inbound traffic is handed to the callbacks a sync
component installs on the transport.
"""
import json
import os
import threading
import traceback
from typing import Callable, List, Optional

import requests

DEBUG_SYNC = os.environ.get('PUSH365_DEBUG_SYNC', '0') in {'1', 'true', 'True', 'yes'}


class TransportError(Exception):
    """The peer could not be reached or the request failed."""


class Transport:
    def __init__(self):
        self.on_message: Optional[Callable[[dict], Optional[dict]]] = None
        self.on_transfer: Optional[Callable[[dict], None]] = None
        self.on_context: Optional[Callable[[dict], None]] = None
        self.on_reachability: Optional[Callable[[bool], None]] = None

    @property
    def is_reachable(self) -> bool:
        raise NotImplementedError

    def check(self) -> bool:
        """Refresh and return reachability."""
        return self.is_reachable

    def send_message(self, payload: dict) -> Optional[dict]:
        """Deliver now and return the peer's reply; raises TransportError."""
        raise NotImplementedError

    def transfer(self, payload: dict) -> None:
        """Queue for guaranteed, in-order delivery."""
        raise NotImplementedError

    def update_context(self, payload: dict) -> None:
        """Replace the latest out-of-band context seen by the peer."""
        raise NotImplementedError


class _Link:
    def __init__(self):
        self.reachable = False
        self.lock = threading.RLock()


class LoopbackTransport(Transport):
    """In-process transport; two ends share one link created by pair()."""

    def __init__(self, link: _Link, name: str):
        super().__init__()
        self._link = link
        self.name = name
        self.peer: Optional['LoopbackTransport'] = None
        self._outbox: List[dict] = []
        self._context: Optional[dict] = None

    @classmethod
    def pair(cls, reachable: bool = True):
        link = _Link()
        link.reachable = reachable
        primary, secondary = cls(link, 'primary'), cls(link, 'secondary')
        primary.peer, secondary.peer = secondary, primary
        return primary, secondary

    @property
    def is_reachable(self) -> bool:
        return self._link.reachable

    def set_reachable(self, reachable: bool) -> None:
        """Flip the shared link; queued transfers land before peers are told."""
        with self._link.lock:
            changed = self._link.reachable != reachable
            self._link.reachable = reachable
            if not changed:
                return
            if reachable:
                for end in (self, self.peer):
                    end._drain()
            for end in (self, self.peer):
                if end.on_reachability:
                    end.on_reachability(reachable)

    def _drain(self):
        pending, self._outbox = self._outbox, []
        for payload in pending:
            if self.peer.on_transfer:
                self.peer.on_transfer(payload)
        context, self._context = self._context, None
        if context is not None and self.peer.on_context:
            self.peer.on_context(context)

    def send_message(self, payload: dict) -> Optional[dict]:
        if not self._link.reachable:
            raise TransportError(f'{self.peer.name} is not reachable')
        if self.peer.on_message is None:
            return None
        try:
            return self.peer.on_message(json.loads(json.dumps(payload)))
        except TransportError:
            raise
        except Exception as e:
            # the peer failed to handle it, as an HTTP 5xx would report
            print(f"[Sync] {self.peer.name} failed to handle message: {e}\n{traceback.format_exc()}")
            raise TransportError(f'{self.peer.name} failed: {e}') from e

    def transfer(self, payload: dict) -> None:
        with self._link.lock:
            self._outbox.append(json.loads(json.dumps(payload)))
            if self._link.reachable:
                self._drain()

    def update_context(self, payload: dict) -> None:
        with self._link.lock:
            self._context = json.loads(json.dumps(payload))
            if self._link.reachable:
                self._drain()


class HttpTransport(Transport):
    """Secondary-side transport talking to the primary's Flask API.

    The secondary's own action queue is what survives a relaunch, so
    transfers are posted straight away like messages. poll() pulls the
    primary's latest snapshot and hands it to on_context.
    """

    def __init__(self, base_url: str, timeout: float = 5.0, session: requests.Session = None):
        super().__init__()
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self._reachable = False

    @property
    def is_reachable(self) -> bool:
        return self._reachable

    def _set_reachable(self, reachable: bool):
        changed = reachable != self._reachable
        self._reachable = reachable
        if changed:
            if DEBUG_SYNC:
                print(f"[Sync] primary {'reachable' if reachable else 'unreachable'} at {self.base_url}")
            if self.on_reachability:
                self.on_reachability(reachable)

    def check(self) -> bool:
        """Probe the primary's health endpoint and update reachability."""
        try:
            resp = self.session.get(f'{self.base_url}/health', timeout=self.timeout)
            reachable = resp.status_code == 200
        except requests.RequestException:
            reachable = False
        self._set_reachable(reachable)
        return reachable

    def _post(self, payload: dict) -> dict:
        try:
            resp = self.session.post(f'{self.base_url}/api/sync/message', json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            self._set_reachable(False)
            raise TransportError(str(e)) from e
        if resp.status_code >= 500:
            raise TransportError(f'primary answered {resp.status_code}')
        self._set_reachable(True)
        try:
            return resp.json()
        except ValueError:
            return {}

    def send_message(self, payload: dict) -> Optional[dict]:
        return self._post(payload)

    def transfer(self, payload: dict) -> None:
        reply = self._post(payload)
        if reply and self.on_context:
            self.on_context(reply)

    update_context = transfer

    def poll(self) -> Optional[dict]:
        try:
            resp = self.session.get(f'{self.base_url}/api/sync/snapshot', timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            if DEBUG_SYNC:
                print(f"[Sync] poll failed: {e}")
            self._set_reachable(False)
            return None
        self._set_reachable(True)
        if self.on_context:
            self.on_context(payload)
        return payload
