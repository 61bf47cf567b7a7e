"""Built-in command pipeline host.

Runs ``[pipeline].command`` through the shell once per inbound message: the
message body goes to stdin, stdout (if any) comes back as the reply.
Message metadata is exported as ``IMBRIDGE_*`` environment variables.

Activation: set ``[pipeline] command = "..."`` in config.toml.  The plugin
returns ``None`` when no command is configured, so it never shadows a
third-party host.
"""

from __future__ import annotations

from typing import Any

import pluggy

from imbridge.dispatch import InboundContext, ReplyDispatcher
from imbridge.logger import logger
from imbridge.types import ReplyPayload
from imbridge.utils import run_process

hookimpl = pluggy.HookimplMarker("imbridge")


def _command_env(ctx: InboundContext) -> dict[str, str]:
    env = {
        "IMBRIDGE_FROM": ctx.from_id,
        "IMBRIDGE_SENDER_ID": ctx.sender_id,
        "IMBRIDGE_SENDER_NAME": ctx.sender_name,
        "IMBRIDGE_SESSION_KEY": ctx.session_key,
        "IMBRIDGE_CHAT_TYPE": ctx.chat_type,
        "IMBRIDGE_MESSAGE_ID": ctx.message_sid,
    }
    if ctx.media_paths:
        env["IMBRIDGE_MEDIA_PATHS"] = "\n".join(ctx.media_paths)
    if ctx.reply_to_body is not None:
        env["IMBRIDGE_REPLY_TO_BODY"] = ctx.reply_to_body
        env["IMBRIDGE_REPLY_TO_SENDER"] = ctx.reply_to_sender or ""
    return env


class CommandPipelineHost:
    """:class:`~imbridge.dispatch.DispatchHost` backed by a shell command."""

    def __init__(self, command: str, *, cwd: str | None = None, timeout_seconds: float = 600) -> None:
        self.command = command
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds

    def finalize_inbound_context(self, ctx: InboundContext) -> InboundContext:
        ctx.body = ctx.body.strip()
        return ctx

    async def dispatch_reply(self, ctx: InboundContext, dispatcher: ReplyDispatcher) -> None:
        result = await run_process(
            self.command,
            shell=True,
            stdin=ctx.body,
            cwd=self.cwd,
            env=_command_env(ctx),
            timeout_seconds=self.timeout_seconds,
        )
        if result.timed_out:
            logger.error("Pipeline command timed out", message=ctx.message_sid)
            return
        if not result.ok:
            logger.error(
                "Pipeline command failed",
                message=ctx.message_sid,
                exit_code=result.returncode,
                err=result.start_error or result.stderr[-500:],
            )
            return
        if result.stdout:
            await dispatcher.send(ReplyPayload(text=result.stdout))


class CommandPipelinePlugin:
    @hookimpl
    def imbridge_dispatch_host(self, settings: Any) -> CommandPipelineHost | None:
        cfg = settings.pipeline
        if not cfg.command:
            logger.debug("Command pipeline skipped, no command configured")
            return None
        return CommandPipelineHost(cfg.command, cwd=cfg.cwd, timeout_seconds=cfg.timeout_seconds)
