"""Exceptions raised by treemirror."""


class TreeMirrorError(Exception):
    """Base class for treemirror errors."""


class MessageValidationError(TreeMirrorError):
    """An incoming message failed schema validation."""


class CodecError(TreeMirrorError):
    """A payload could not be encoded or decoded."""


class TransportError(TreeMirrorError):
    """A message could not be delivered."""
