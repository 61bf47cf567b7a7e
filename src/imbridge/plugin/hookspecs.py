"""Pluggy hook specifications for imbridge plugins.

All hooks use the "imbridge" namespace and are validated by pluggy at
registration time.
"""

from __future__ import annotations

from typing import Any

import pluggy

hookspec = pluggy.HookspecMarker("imbridge")


class IMBridgeSpec:
    """Hook specifications for imbridge plugins."""

    @hookspec
    def imbridge_dispatch_host(self, settings: Any) -> Any | None:
        """Provide the agent pipeline that inbound messages are dispatched to.

        The returned object must implement
        :class:`imbridge.dispatch.DispatchHost`:

            - finalize_inbound_context(ctx) -> InboundContext
            - async dispatch_reply(ctx, dispatcher) -> None

        and may implement ``create_reply_dispatcher(deliver, on_error)``.

        Args:
            settings: The loaded :class:`imbridge.config.Settings`

        Returns:
            A dispatch host, or None if this plugin isn't configured to provide one.
        """
