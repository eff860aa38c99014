"""
Exception hierarchy for the market-data session.

Frame decoding errors are recovered per frame by the session; transport,
symbol and reconnect errors surface to callers.
"""


class BitfinexFeedError(Exception):
    """Base exception for all feed errors."""

    pass


class FrameDecodingError(BitfinexFeedError):
    """Base exception for a single inbound frame that could not be handled."""

    pass


class MalformedFrameError(FrameDecodingError):
    """Frame is not valid JSON or does not have the expected shape."""

    pass


class UnknownEventError(FrameDecodingError):
    """Control frame carries an unrecognised ``event`` value."""

    pass


class UnknownChannelError(FrameDecodingError):
    """``subscribed`` frame announces a channel type this client does not decode."""

    pass


class UnboundChannelError(FrameDecodingError):
    """Channel frame references a channel id with no live binding."""

    pass


class TransportError(BitfinexFeedError):
    """Connecting, sending on or closing the transport failed."""

    pass


class UnknownSymbolError(BitfinexFeedError):
    """No listeners were ever registered for the symbol."""

    pass


class ReconnectTimeoutError(BitfinexFeedError):
    """Resubscription did not complete within the configured bound."""

    pass
