"""SSH connection pooling with keepalive validation.

Locking Strategy:
- `_meta_lock`: Protects the _connections and _host_locks dict structure.
  Held only for map access, never across network I/O.
- Per-target locks: Serialize lookups and dials for one target key so two
  callers never race to dial the same target. A slow probe or dial only
  blocks callers of that same target.

A cached connection is reused only after a keepalive probe succeeds within
keepalive_timeout. A connection that fails its probe is closed and removed
before a replacement is dialed.
"""

import asyncio
import logging
import os

import asyncssh

from logscout.models import PooledConnection, Target
from logscout.services.errors import AuthConfigError, ConnectError

logger = logging.getLogger(__name__)

KEEPALIVE_COMMAND = "true"
AGENT_CONNECT_TIMEOUT = 5.0


class ConnectionPool:
    """Keyed cache of authenticated SSH sessions, one per user@host:port."""

    def __init__(
        self,
        dial_timeout: float = 10.0,
        keepalive_timeout: float = 5.0,
        known_hosts: str | None = None,
    ) -> None:
        """Initialize the pool.

        Args:
            dial_timeout: Seconds allowed for the TCP connect
            keepalive_timeout: Seconds allowed for the liveness probe of a
                cached connection
            known_hosts: Path to known_hosts file, or None to disable
                host key verification
        """
        self.dial_timeout = dial_timeout
        self.keepalive_timeout = keepalive_timeout
        self._known_hosts = known_hosts
        self._connections: dict[str, PooledConnection] = {}
        self._host_locks: dict[str, asyncio.Lock] = {}
        self._meta_lock = asyncio.Lock()
        self._sudo_passwords: dict[str, str] = {}

        if self._known_hosts is None:
            logger.warning("SSH host key verification disabled")
        else:
            logger.debug(
                "SSH host key verification enabled (known_hosts=%s)",
                self._known_hosts,
            )

    async def _get_host_lock(self, key: str) -> asyncio.Lock:
        """Get or create the lock for one target key."""
        async with self._meta_lock:
            if key not in self._host_locks:
                self._host_locks[key] = asyncio.Lock()
            return self._host_locks[key]

    async def get_client(self, target: Target) -> asyncssh.SSHClientConnection:
        """Return a live cached connection for target, or dial a new one.

        Cancelling the calling task cancels the probe or dial in progress;
        the CancelledError propagates and nothing is cached.

        Raises:
            ConnectError: Dial, handshake or authentication failed
            AuthConfigError: Authentication could not be set up
        """
        key = target.key
        logger.debug("GetClient start: %s", key)

        host_lock = await self._get_host_lock(key)
        async with host_lock:
            async with self._meta_lock:
                pooled = self._connections.get(key)

            if pooled is not None:
                if await self._probe(key, pooled):
                    logger.debug("Reusing existing connection to %s", key)
                    return pooled.connection
                await self._evict(key, pooled)
            else:
                logger.debug("No cached client for %s, dialing", key)

            pooled = await self._dial(target)

            async with self._meta_lock:
                self._connections[key] = pooled

            logger.info(
                "SSH connection established to %s (pool_size=%d)",
                key,
                len(self._connections),
            )
            return pooled.connection

    async def _probe(self, key: str, pooled: PooledConnection) -> bool:
        """Check that a cached connection still answers within the keepalive bound."""
        if pooled.is_stale:
            logger.info("Connection to %s is closed", key)
            return False

        logger.debug("Found cached client for %s, sending keepalive", key)
        try:
            await asyncio.wait_for(
                pooled.connection.run(KEEPALIVE_COMMAND, check=False),
                timeout=self.keepalive_timeout,
            )
        except TimeoutError:
            logger.info("Keepalive timed out for %s", key)
            return False
        except (OSError, asyncssh.Error) as e:
            logger.info("Keepalive failed for %s: %s", key, e)
            return False

        logger.debug("Keepalive OK for %s", key)
        return True

    async def _evict(self, key: str, pooled: PooledConnection) -> None:
        """Remove a dead connection if it is still the cached one, then close it."""
        async with self._meta_lock:
            still_cached = self._connections.get(key) is pooled
            if still_cached:
                del self._connections[key]
        if still_cached:
            logger.info("Removing dead connection to %s", key)
            pooled.close()

    async def _dial(self, target: Target) -> PooledConnection:
        """Authenticate and complete the SSH handshake with target."""
        key = target.key
        logger.debug("Building auth for %s (method=%s)", key, target.auth.method)
        client_keys, agent = await self._build_auth(target)

        logger.info("Opening SSH connection to %s", key)
        try:
            conn = await asyncssh.connect(
                target.host,
                port=target.port,
                username=target.user,
                known_hosts=self._known_hosts,
                client_keys=client_keys,
                agent_path=None,
                password=None,
                connect_timeout=self.dial_timeout,
            )
        except asyncio.CancelledError:
            logger.debug("Dial to %s cancelled", key)
            if agent is not None:
                agent.close()
            raise
        except (OSError, asyncssh.Error, TimeoutError) as e:
            logger.info("Dial failed for %s: %s", key, e)
            if agent is not None:
                agent.close()
            raise ConnectError(key, e) from e

        # A cancellation that raced the end of the handshake still wins.
        task = asyncio.current_task()
        if task is not None and task.cancelling():
            logger.debug("Cancelled after handshake for %s, closing", key)
            conn.close()
            if agent is not None:
                agent.close()
            raise asyncio.CancelledError()

        return PooledConnection(connection=conn, agent=agent)

    async def _build_auth(self, target: Target) -> tuple[list, asyncssh.SSHAgentClient | None]:
        """Resolve client keys for the target's auth method.

        Returns:
            Tuple of (client keys, agent client to close with the connection)

        Raises:
            AuthConfigError: If the key or agent can't be used
        """
        key = target.key
        method = target.auth.method

        if method == "key":
            key_path = target.auth.key_path
            if not key_path:
                raise AuthConfigError(key, "no key_path configured")
            try:
                private_key = asyncssh.read_private_key(key_path)
            except OSError as e:
                raise AuthConfigError(key, f"reading key {key_path}: {e}") from e
            except asyncssh.KeyImportError as e:
                raise AuthConfigError(key, f"parsing key {key_path}: {e}") from e
            return [private_key], None

        if method == "agent":
            sock = os.getenv("SSH_AUTH_SOCK", "")
            if not sock:
                raise AuthConfigError(key, "SSH_AUTH_SOCK not set")
            logger.debug("Dialing agent socket %s", sock)
            try:
                agent = await asyncio.wait_for(
                    asyncssh.connect_agent(sock),
                    timeout=AGENT_CONNECT_TIMEOUT,
                )
            except (OSError, asyncssh.Error, TimeoutError) as e:
                raise AuthConfigError(key, f"connecting to SSH agent: {e}") from e
            if agent is None:
                raise AuthConfigError(key, f"connecting to SSH agent at {sock} failed")
            try:
                agent_keys = await agent.get_keys()
            except (OSError, asyncssh.Error) as e:
                agent.close()
                raise AuthConfigError(key, f"listing SSH agent keys: {e}") from e
            except BaseException:
                agent.close()
                raise
            logger.debug("Agent offered %d key(s)", len(agent_keys))
            return list(agent_keys), agent

        if method == "password":
            raise AuthConfigError(
                key,
                "password auth requires interactive input; use key or agent instead",
            )

        raise AuthConfigError(key, f"unknown auth method: {method}")

    async def close_all(self) -> None:
        """Close every cached connection and empty the pool."""
        async with self._meta_lock:
            pooled_items = list(self._connections.items())
            self._connections.clear()

        if pooled_items:
            logger.info("Closing all %d connection(s)", len(pooled_items))
        for key, pooled in pooled_items:
            logger.debug("Closing connection to %s", key)
            pooled.close()

    def set_sudo_password(self, target: Target, password: str) -> None:
        """Cache the sudo password for a target (kept in memory until cleared)."""
        self._sudo_passwords[target.key] = password

    def get_sudo_password(self, target: Target) -> str:
        """Return the cached sudo password for a target, or empty string."""
        return self._sudo_passwords.get(target.key, "")

    def clear_sudo_password(self, target: Target) -> None:
        """Forget the cached sudo password for a target."""
        self._sudo_passwords.pop(target.key, None)

    @property
    def pool_size(self) -> int:
        """Return the current number of connections in the pool."""
        return len(self._connections)

    @property
    def active_keys(self) -> list[str]:
        """Return the keys of targets with cached connections."""
        return list(self._connections.keys())
