from __future__ import annotations


RATE_CARD_STATUSES = ("draft", "active", "retired")
MARKUP_STATUSES = ("active", "inactive")
BULK_OPERATIONS = ("percent", "multiply", "set")
MODALITIES = ("text", "image", "audio", "video", "embedding")
TOKEN_CATEGORIES = ("input", "output", "cached_input")
