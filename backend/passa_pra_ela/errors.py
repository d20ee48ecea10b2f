class MarketError(Exception):
    """Base class for failures raised by the market controller."""


class InvalidStatus(MarketError, ValueError):
    def __init__(self, value: object):
        super().__init__(f"Invalid market status: {value!r}. Use 'open' or 'closed'.")
        self.value = value


class SettlementFailed(MarketError):
    """The market transition aborted and was rolled back; nothing was changed."""


class MarketClosed(MarketError):
    def __init__(self):
        super().__init__("Market is closed. Lineups are locked until the next round opens.")
