"""Deterministic routing of inbound envelopes to groups and sessions.

Routing runs two passes over the configured groups, in declaration order:

1. Explicit bindings: a source on the envelope's channel whose channel_ids
   list contains the envelope's source_id.
2. Fallbacks: a source on the channel whose scope accepts the envelope, or a
   source with neither scope nor channel_ids, which accepts the whole channel.

An explicit binding anywhere beats a fallback in an earlier group. Routing is
pure: it reads configuration and the envelope and touches nothing else.

Session keys:

    group:<groupId>:main
    group:<groupId>:<channel>:<dm|group|comments>:<identity>[:thread:<threadId>]
"""

from fahrenheit.channels.models import COMMENT_CHANNEL
from fahrenheit.config.models.gateway import GatewayConfig, GroupSource, SourceScope
from fahrenheit.gateway.models import InboundEnvelope, ResolvedRoute

PERSONAL_GROUP_ID = "personal"


def scope_matches(scope: SourceScope | str, envelope: InboundEnvelope) -> bool:
    """Whether a source scope accepts the envelope's conversation kind."""
    scope = SourceScope(scope)
    if scope is SourceScope.ALL:
        return True
    if scope is SourceScope.DM:
        return not envelope.is_group
    if scope is SourceScope.GROUP:
        return envelope.is_group
    return envelope.channel_id == COMMENT_CHANNEL.value


def _binds_explicitly(source: GroupSource, envelope: InboundEnvelope) -> bool:
    return bool(source.channel_ids) and envelope.source_id in source.channel_ids


def _match_group(config: GatewayConfig, envelope: InboundEnvelope) -> tuple[str, str] | None:
    for group_id, group in config.groups.items():
        for source in group.sources:
            if source.channel == envelope.channel_id and _binds_explicitly(source, envelope):
                return group_id, f"group:{group_id}:channelId"

    for group_id, group in config.groups.items():
        for source in group.sources:
            if source.channel != envelope.channel_id:
                continue
            if source.scope is not None:
                if scope_matches(source.scope, envelope):
                    return group_id, f"group:{group_id}:scope:{source.scope}"
            elif not source.channel_ids:
                return group_id, f"group:{group_id}:channel"

    return None


def build_session_keys(group_id: str, envelope: InboundEnvelope) -> tuple[str, str]:
    """Return (main_session_key, session_key) for an envelope in a group."""
    main_session_key = f"group:{group_id}:main"
    if envelope.channel_id == COMMENT_CHANNEL.value:
        scope = SourceScope.COMMENTS.value
    elif envelope.is_group:
        scope = SourceScope.GROUP.value
    else:
        scope = SourceScope.DM.value
    identity = envelope.source_id if envelope.is_group else envelope.sender_id
    session_key = f"group:{group_id}:{envelope.channel_id}:{scope}:{identity}"
    if envelope.thread_id:
        session_key = f"{session_key}:thread:{envelope.thread_id}"
    return main_session_key, session_key


def resolve_route(config: GatewayConfig, envelope: InboundEnvelope) -> ResolvedRoute | None:
    """Route an envelope to a group and session, or None when nothing matches."""
    matched = _match_group(config, envelope)
    if matched is None:
        return None
    group_id, matched_by = matched
    group = config.groups[group_id]
    main_session_key, session_key = build_session_keys(group_id, envelope)
    return ResolvedRoute(
        group_id=group_id,
        session_key=session_key,
        main_session_key=main_session_key,
        matched_by=matched_by,
        mode=group.mode,
        busy_policy=group.busy_policy,
        allow_from=list(group.allow_from),
    )


def build_personal_cli_session_key(identity: str, thread_id: str | None = None) -> str:
    """Session key for a local CLI conversation in the personal group."""
    base = f"group:{PERSONAL_GROUP_ID}:cli:dm:{identity}"
    return f"{base}:thread:{thread_id}" if thread_id else base
