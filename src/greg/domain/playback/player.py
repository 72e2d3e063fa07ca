"""
MPV player supervision with JSON IPC for greg

`MPVPlayer` launches mpv as a detached process per playback, connects to
its IPC endpoint in the background and reports progress, end of playback
and failures as events.

Threads per session:
- initializer: waits for the IPC endpoint and connects
- process-exit monitor: the only place that waits on the mpv process
- progress monitor: polls mpv once per interval while connected
"""

import itertools
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from loguru import logger

from greg.core.config import PlayerConfig

from .events import (
    CallbackHandle,
    ErrorEvent,
    EventDispatcher,
    PlaybackEndedEvent,
    ProgressEvent,
    Subscription,
)
from .exceptions import (
    ConnectError,
    DeadTransportError,
    IPCCommandError,
    NoFileLoadedError,
    NotInitializedError,
    PlayerStoppedError,
    ProbeCancelledError,
    ReadinessTimeoutError,
    SpawnError,
    TransportError,
    UnexpectedExitError,
)
from .ipc import MpvIPCClient
from .launcher import Spawner, build_mpv_args, launch
from .models import PlaybackProgress, PlaybackState, PlayerInfo, PlayOptions, Seconds, to_seconds
from .platform import (
    DEFAULT_ENV,
    HostEnvironment,
    Platform,
    TransportConfig,
    TransportKind,
    find_mpv_executable,
    generate_transport_config,
    get_connection_string,
    get_player_info,
    resolve_platform,
)
from .transport import Transport, open_transport

# Properties whose failure counts towards dead-transport detection
CRITICAL_PROPERTIES = ("time-pos", "duration", "pause", "eof-reached")
DEAD_TRANSPORT_THRESHOLD = 3
# Unavailable together once mpv unloads the file and goes idle
FILE_PROPERTIES = ("time-pos", "duration", "eof-reached")

DEFAULT_VOLUME = 100.0
DEFAULT_SPEED = 1.0


@dataclass
class PlaybackSession:
    """Resources owned by one play() call.

    `client` and `process` are cleared only by the teardown path, and that
    path runs at most once (`torn_down`).
    """

    generation: int
    transport_config: TransportConfig
    transport: Transport
    process: Any = None
    client: Optional[MpvIPCClient] = None
    url: str = ""
    options: Optional[PlayOptions] = None
    cancel: threading.Event = field(default_factory=threading.Event)
    torn_down: bool = False


def _as_float(value: Any, default: float) -> float:
    # bool is an int subclass; mpv never reports numbers as booleans
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def _as_bool(value: Any) -> bool:
    return value if isinstance(value, bool) else False


def _optional_property(client: MpvIPCClient, name: str) -> Any:
    try:
        return client.get_property(name)
    except TransportError:
        return None


def collect_progress(client: MpvIPCClient, named_pipe: bool = False) -> PlaybackProgress:
    """Read a complete progress snapshot from mpv.

    Volume and speed fall back to defaults when missing. Three or more
    connection failures among the critical properties mean the connection
    is dead. Properties mpv answers as unavailable are not connection
    failures; when all of the file properties are unavailable, mpv is idle.

    Raises:
        DeadTransportError: If the IPC connection appears dead
        NoFileLoadedError: If mpv has no file loaded
    """
    values: dict[str, Any] = {}
    failures = 0
    unavailable: set[str] = set()
    for name in CRITICAL_PROPERTIES:
        try:
            values[name] = client.get_property(name)
        except IPCCommandError as e:
            unavailable.add(name)
            values[name] = None
            logger.debug(f"get_property {name} rejected: {e}")
        except TransportError as e:
            failures += 1
            values[name] = None
            logger.debug(f"get_property {name} failed: {e}")

    volume = _optional_property(client, "volume")
    speed = _optional_property(client, "speed")

    if failures >= DEAD_TRANSPORT_THRESHOLD:
        if named_pipe:
            raise DeadTransportError(
                failures,
                f"Windows IPC appears dead (failed to get {failures} properties)",
            )
        raise DeadTransportError(failures)

    if unavailable.issuperset(FILE_PROPERTIES):
        raise NoFileLoadedError()

    time_pos = _as_float(values["time-pos"], 0.0)
    duration = _as_float(values["duration"], 0.0)
    percentage = (time_pos / duration) * 100 if duration > 0 else 0.0

    return PlaybackProgress(
        current_time=time_pos,
        duration=duration,
        percentage=percentage,
        paused=_as_bool(values["pause"]),
        volume=int(_as_float(volume, DEFAULT_VOLUME)),
        speed=_as_float(speed, DEFAULT_SPEED),
        eof=_as_bool(values["eof-reached"]),
    )


class MPVPlayer:
    """Player implementation driving an external mpv over JSON IPC."""

    def __init__(
        self,
        config: Optional[PlayerConfig] = None,
        debug: Optional[bool] = None,
        env: Optional[HostEnvironment] = None,
        spawner: Optional[Spawner] = None,
        platform: Optional[Platform] = None,
    ):
        self.config = config or PlayerConfig()
        self.debug = self.config.debug if debug is None else debug
        self.env = env or DEFAULT_ENV
        self.spawner = spawner
        self.platform = platform or resolve_platform(self.env)

        self._lock = threading.Lock()
        self._state = PlaybackState.STOPPED
        self._session: Optional[PlaybackSession] = None
        self._generations = itertools.count(1)
        self._events = EventDispatcher()

    # ------------------------------------------------------------------
    # Playback control
    # ------------------------------------------------------------------

    def play(self, url: str, options: Optional[PlayOptions] = None) -> None:
        """Start playback of `url`, replacing any current playback.

        Returns once mpv is spawned; connection problems after that are
        reported through the error event, not raised here.

        Raises:
            ExecutableNotFoundError: mpv is not installed
            AddressGenerationError: No IPC address could be generated
            SpawnError: mpv failed to start
        """
        options = options or PlayOptions()

        with self._lock:
            if self._state != PlaybackState.STOPPED:
                logger.info("Stopping current playback before starting a new one")
                self._stop_locked()

            executable = find_mpv_executable(
                self.platform,
                wsl_use_windows_player=self.config.wsl_use_windows_player,
                override=self.config.mpv_path,
                env=self.env,
            )
            transport_config = generate_transport_config(
                self.platform,
                kind=TransportKind.TCP if self.config.transport == "tcp" else None,
                wsl_use_windows_player=self.config.wsl_use_windows_player,
                env=self.env,
            )
            transport = open_transport(transport_config)
            args = build_mpv_args(
                transport_config,
                url,
                options,
                load_user_config=self.config.load_user_config,
                debug=self.debug,
            )

            try:
                process = launch(executable, args, spawner=self.spawner)
            except SpawnError:
                transport.release()
                raise

            session = PlaybackSession(
                generation=next(self._generations),
                transport_config=transport_config,
                transport=transport,
                process=process,
                url=url,
                options=options,
            )
            self._session = session
            self._state = PlaybackState.LOADING

        logger.info(
            f"Playback session {session.generation} loading: {url} "
            f"(ipc={transport_config.address})"
        )
        self._start_thread(self._monitor_process, session, process, name="exit")
        self._start_thread(self._initialize, session, name="init")

    def stop(self) -> None:
        """Stop playback and clean up. Calling it again is a no-op."""
        with self._lock:
            self._stop_locked()

    def seek(self, position: Seconds) -> None:
        """Seek to an absolute position (seconds or timedelta).

        Raises:
            NotInitializedError: No IPC connection yet
            TransportError: mpv did not accept the seek
        """
        client = self._require_client()
        client.set_property("time-pos", to_seconds(position))

    def pause(self) -> None:
        """Pause playback."""
        self._set_paused(True)

    def resume(self) -> None:
        """Resume paused playback."""
        self._set_paused(False)

    def set_volume(self, volume: int) -> None:
        """Set volume (0-100)."""
        client = self._require_client()
        client.set_property("volume", max(0, min(100, int(volume))))

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def get_progress(self) -> PlaybackProgress:
        """Return the current playback progress.

        Raises:
            PlayerStoppedError: The player is stopped
            NotInitializedError: mpv is not connected yet
            TransportError: The snapshot could not be read
        """
        with self._lock:
            state = self._state
            session = self._session
            client = session.client if session else None

        if state == PlaybackState.STOPPED:
            raise PlayerStoppedError()
        if client is None:
            raise NotInitializedError()

        return collect_progress(client, named_pipe=self._is_named_pipe(session))

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_progress_update(self, callback: Callable[[PlaybackProgress], None]) -> CallbackHandle:
        """Set the progress update callback (replaces any previous one)."""
        return self._events.register("progress", callback)

    def on_playback_end(self, callback: Callable[[], None]) -> CallbackHandle:
        """Set the playback end callback (replaces any previous one)."""
        return self._events.register("end", callback)

    def on_error(self, callback: Callable[[Exception], None]) -> CallbackHandle:
        """Set the error callback (replaces any previous one)."""
        return self._events.register("error", callback)

    def subscribe(self, maxsize: int = 0) -> Subscription:
        """Open the player's event channel, closing any previous one."""
        return self._events.subscribe(maxsize=maxsize)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        with self._lock:
            return self._state

    def is_playing(self) -> bool:
        return self.state == PlaybackState.PLAYING

    def is_paused(self) -> bool:
        return self.state == PlaybackState.PAUSED

    @property
    def current_url(self) -> Optional[str]:
        with self._lock:
            session = self._session
            if session is None or session.torn_down:
                return None
            return session.url

    @property
    def transport(self) -> Optional[TransportConfig]:
        """IPC endpoint of the live session, if any."""
        with self._lock:
            session = self._session
            if session is None or session.torn_down:
                return None
            return session.transport_config

    def player_info(self) -> PlayerInfo:
        """Locate mpv and report its version."""
        path = find_mpv_executable(
            self.platform,
            wsl_use_windows_player=self.config.wsl_use_windows_player,
            override=self.config.mpv_path,
            env=self.env,
        )
        return get_player_info(path)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_thread(self, target: Callable, *args: Any, name: str) -> threading.Thread:
        session = args[0]
        thread = threading.Thread(
            target=target,
            args=args,
            name=f"mpv-{name}-{session.generation}",
            daemon=True,
        )
        thread.start()
        return thread

    @staticmethod
    def _is_named_pipe(session: Optional[PlaybackSession]) -> bool:
        return session is not None and session.transport_config.kind == TransportKind.NAMED_PIPE

    def _require_client(self) -> MpvIPCClient:
        with self._lock:
            session = self._session
            client = session.client if session else None
        if client is None:
            raise NotInitializedError()
        return client

    def _set_paused(self, paused: bool) -> None:
        client = self._require_client()
        client.set_property("pause", paused)
        with self._lock:
            if self._session is not None and self._session.client is client:
                self._apply_pause_locked(paused)

    def _apply_pause_locked(self, paused: bool) -> None:
        if self._state in (PlaybackState.PLAYING, PlaybackState.PAUSED):
            self._state = PlaybackState.PAUSED if paused else PlaybackState.PLAYING

    def _stop_locked(self) -> None:
        """Stop without locking (must be called with lock held)."""
        if self._state == PlaybackState.STOPPED:
            return

        # Mark as stopped first so monitors see the stop as intentional
        self._state = PlaybackState.STOPPED
        if self._session is not None:
            self._teardown_locked(self._session)

    def _teardown_locked(self, session: PlaybackSession) -> bool:
        """Release a session's resources; runs at most once per session."""
        if session.torn_down:
            return False
        session.torn_down = True

        # Stops the initializer and the progress monitor
        session.cancel.set()

        # Clear the reference before the connection is released elsewhere
        client, session.client = session.client, None
        if client is not None:
            threading.Thread(
                target=self._quit_client,
                args=(client,),
                name=f"mpv-quit-{session.generation}",
                daemon=True,
            ).start()

        # The exit monitor reaps the process; only kill it here
        process, session.process = session.process, None
        if process is not None:
            try:
                process.kill()
            except OSError:
                pass  # Process already exited

        session.transport.release()
        session.url = ""
        session.options = None

        logger.info(f"Playback session {session.generation} torn down")
        return True

    def _quit_client(self, client: MpvIPCClient) -> None:
        try:
            client.quit(timeout=self.config.quit_timeout)
        except TransportError as e:
            logger.debug(f"mpv quit not acknowledged: {e}")
        finally:
            client.close()

    def _stop_session(self, session: PlaybackSession) -> None:
        """Stop `session` only if it is still the live one."""
        with self._lock:
            if session is self._session and not session.torn_down:
                self._stop_locked()

    def _initialize(self, session: PlaybackSession) -> None:
        """Wait for mpv's IPC endpoint, connect, and enter Playing."""
        deadline = time.monotonic() + self.config.init_timeout
        try:
            session.transport.wait_ready(session.cancel, deadline)
            client = MpvIPCClient.connect(session.transport)
        except ProbeCancelledError:
            logger.debug(f"Session {session.generation} initialization cancelled")
            return
        except (ReadinessTimeoutError, ConnectError) as e:
            self._fail_initialization(session, e)
            return

        with self._lock:
            stale = session is not self._session or session.torn_down
            if not stale:
                session.client = client
                self._state = PlaybackState.PLAYING

        if stale:
            client.close()
            return

        logger.info(
            f"Connected to mpv IPC at {get_connection_string(session.transport_config)}"
        )
        self._start_thread(self._monitor_progress, session, name="progress")

    def _fail_initialization(self, session: PlaybackSession, error: Exception) -> None:
        with self._lock:
            if session is not self._session or session.torn_down:
                return
            self._teardown_locked(session)
            self._state = PlaybackState.ERROR

        failure = self._describe_init_failure(session, error)
        logger.error(str(failure))
        self._events.emit(ErrorEvent(failure))

    def _describe_init_failure(self, session: PlaybackSession, error: Exception) -> Exception:
        address = session.transport_config.address
        named_pipe = self._is_named_pipe(session)

        if isinstance(error, ReadinessTimeoutError):
            if named_pipe:
                message = (
                    f"failed to connect to mpv (timeout waiting for named pipe: {address}): "
                    f"{error}\nThis may indicate mpv.exe failed to start or lacks permissions"
                )
            else:
                message = f"timeout waiting for mpv IPC at {address}: {error}"
            failure: Exception = ReadinessTimeoutError(address, error.timeout, message)
        elif named_pipe:
            failure = ConnectError(
                f"failed to connect to mpv IPC (Windows named pipe: {address}): {error}\n"
                "Make sure mpv.exe is properly installed and in PATH"
            )
        else:
            connection = get_connection_string(session.transport_config)
            failure = ConnectError(f"failed to connect to mpv IPC at {connection}: {error}")

        failure.__cause__ = error
        return failure

    def _monitor_progress(self, session: PlaybackSession) -> None:
        """Poll progress until cancelled, disconnected or end of file."""
        interval = self.config.progress_interval
        named_pipe = self._is_named_pipe(session)
        reported = False

        while not session.cancel.wait(interval):
            with self._lock:
                client = session.client
            if client is None:
                return

            try:
                progress = collect_progress(client, named_pipe=named_pipe)
            except NoFileLoadedError:
                if not reported:
                    # File not opened yet
                    continue
                with self._lock:
                    live = session is self._session and not session.torn_down
                if live:
                    logger.info(f"Playback session {session.generation} ended (mpv is idle)")
                    self._events.emit(PlaybackEndedEvent())
                return
            except DeadTransportError as e:
                logger.warning(f"mpv IPC connection is dead: {e}")
                with self._lock:
                    live = session is self._session and not session.torn_down
                if live:
                    self._events.emit(ErrorEvent(e))
                    self._stop_session(session)
                return
            except TransportError as e:
                # Transient; try again on the next tick
                logger.debug(f"Skipping progress tick: {e}")
                continue

            with self._lock:
                if session is not self._session or session.torn_down:
                    return
                self._apply_pause_locked(progress.paused)

            self._events.emit(ProgressEvent(progress))
            reported = True

            if progress.eof:
                logger.info(f"Playback session {session.generation} reached end of file")
                self._events.emit(PlaybackEndedEvent())
                return

    def _monitor_process(self, session: PlaybackSession, process: Any) -> None:
        """Wait for mpv to exit and clean up after it."""
        # Blocks until the process exits (killed or natural exit)
        returncode = process.wait()

        with self._lock:
            unexpected = (
                session is self._session
                and not session.torn_down
                and self._state != PlaybackState.STOPPED
            )

        if unexpected:
            error = UnexpectedExitError(returncode)
            logger.warning(str(error))
            self._events.emit(ErrorEvent(error))
        else:
            logger.debug(f"mpv (session {session.generation}) exited with {returncode}")

        # Clean up after process exits (no-op if already stopped)
        self._stop_session(session)


def create_player(config: Optional[PlayerConfig] = None, debug: Optional[bool] = None) -> MPVPlayer:
    """Create a player after checking that mpv is installed.

    Raises:
        ExecutableNotFoundError: If mpv is not available
    """
    player = MPVPlayer(config=config, debug=debug)
    find_mpv_executable(
        player.platform,
        wsl_use_windows_player=player.config.wsl_use_windows_player,
        override=player.config.mpv_path,
        env=player.env,
    )
    return player
