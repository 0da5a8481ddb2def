"""Session concurrency controller.

Sits in front of the agent capability and guarantees at most one invocation
in flight per session key. Two busy policies:

- queue: the message runs after every earlier message for the key settles.
- steer: while the key is running, the message is pushed into the active run
  through the agent's side channel and the caller gets STEER_ACKNOWLEDGEMENT
  at once. An idle key falls back to queue.

Every transition is written to the audit sink as an AgentActionLog.
"""

from abc import abstractmethod
from typing import Protocol

from fahrenheit.audit.models import AgentAction, AgentActionLog, RunStatus
from fahrenheit.audit.sink import LogSink
from fahrenheit.config.models.gateway import SessionBusyPolicy
from fahrenheit.exceptions import InvocationError
from fahrenheit.observability.logging import get_logger
from fahrenheit.runtime.session_queue import SessionQueueRegistry

logger = get_logger(__name__)

STEER_ACKNOWLEDGEMENT = "Steering message delivered to the active run."


class AgentInvoker(Protocol):
    """The language-model agent, as seen by the runtime."""

    @abstractmethod
    async def invoke(
        self,
        session_key: str,
        message: str,
        *,
        correlation_id: str | None = None,
    ) -> str:
        """Run one prompt to completion and return the reply text."""
        ...

    @abstractmethod
    async def steer(
        self,
        session_key: str,
        message: str,
        *,
        correlation_id: str | None = None,
    ) -> None:
        """Inject a message into the session's active run."""
        ...


class SessionConcurrencyController:
    """Serializes agent invocations per session key."""

    def __init__(self, invoker: AgentInvoker, log_sink: LogSink) -> None:
        self._invoker = invoker
        self._log_sink = log_sink
        self._queues = SessionQueueRegistry()
        self._sessions: dict[str, None] = {}

    async def handle(
        self,
        session_key: str,
        message: str,
        *,
        correlation_id: str | None = None,
        busy_policy: SessionBusyPolicy | str = SessionBusyPolicy.QUEUE,
    ) -> str:
        """Deliver a message to a session under the given busy policy.

        Returns:
            The agent's reply, or STEER_ACKNOWLEDGEMENT for a steered message

        Raises:
            InvocationError: If the agent fails on this message
        """
        self._sessions.setdefault(session_key, None)
        policy = SessionBusyPolicy(busy_policy)

        if policy is SessionBusyPolicy.STEER and self._queues.is_busy(session_key):
            return await self._steer(session_key, message, correlation_id)

        future = self._queues.enqueue(
            session_key,
            lambda: self._run(session_key, message, correlation_id),
        )
        return await future

    def is_busy(self, session_key: str) -> bool:
        return self._queues.is_busy(session_key)

    def list_sessions(self) -> list[str]:
        """Every session key this controller has handled, first-seen order."""
        return list(self._sessions)

    async def close(self) -> None:
        await self._queues.close()

    async def _steer(
        self,
        session_key: str,
        message: str,
        correlation_id: str | None,
    ) -> str:
        await self._record(session_key, correlation_id, AgentAction.STEER, message)
        try:
            await self._invoker.steer(session_key, message, correlation_id=correlation_id)
        except Exception as e:
            await self._fail(session_key, correlation_id, e)
            raise InvocationError(str(e), session_key, correlation_id) from e
        logger.info("session_steered", session_key=session_key, correlation_id=correlation_id)
        return STEER_ACKNOWLEDGEMENT

    async def _run(
        self,
        session_key: str,
        message: str,
        correlation_id: str | None,
    ) -> str:
        await self._record(session_key, correlation_id, AgentAction.PROMPT, message)
        try:
            response = await self._invoker.invoke(
                session_key,
                message,
                correlation_id=correlation_id,
            )
        except Exception as e:
            await self._fail(session_key, correlation_id, e)
            raise InvocationError(str(e), session_key, correlation_id) from e

        await self._record(session_key, correlation_id, AgentAction.RESPONSE, response)
        return response

    async def _fail(
        self,
        session_key: str,
        correlation_id: str | None,
        error: Exception,
    ) -> None:
        logger.error(
            "session_invocation_failed",
            session_key=session_key,
            correlation_id=correlation_id,
            error=str(error),
            error_type=type(error).__name__,
        )
        await self._record(
            session_key,
            correlation_id,
            AgentAction.ERROR,
            str(error),
            status=RunStatus.ERROR,
        )

    async def _record(
        self,
        session_key: str,
        correlation_id: str | None,
        action: AgentAction,
        message: str,
        status: RunStatus = RunStatus.OK,
    ) -> None:
        await self._log_sink.log_action(
            AgentActionLog(
                session_key=session_key,
                correlation_id=correlation_id,
                action=action,
                message=message,
                status=status,
            )
        )
