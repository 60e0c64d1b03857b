# -------- Aliases (clarify intent) --------
UnixMillis = int
Symbol = str
Channel = str  # "trades", "quotes", "bars" or "streams"
SubscriptionSpec = dict[Channel, list[Symbol]]
